"""
Perception Cycle Data Models

Data classes and types shared by the cycle controller and its
collaborators (frame source, analyzer, speaker).
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple


class CycleState(str, Enum):
    """Externally observable status of the perception cycle."""
    IDLE = "idle"
    WARMUP = "warmup"
    CAPTURING = "capturing"
    ANALYZING = "analyzing"
    SPEAKING = "speaking"
    ERROR_PAUSE = "error_pause"


@dataclass(frozen=True)
class Frame:
    """Encoded still image ready to be sent for analysis."""
    data: bytes
    mime_type: str = "image/jpeg"
    captured_at: float = field(default_factory=time.time)
    width: int = 0
    height: int = 0

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Description:
    """Scene description returned by an analyzer."""
    text: str
    detected_entities: Tuple[str, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "description": self.text,
            "detected_entities": list(self.detected_entities),
        }


@dataclass(frozen=True)
class StatusUpdate:
    """Snapshot pushed to status subscribers."""
    state: CycleState
    description: Optional[str] = None
    error: Optional[str] = None
    generation: int = 0


@dataclass
class CycleStats:
    """Counters for one activation session."""
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None

    frames_captured: int = 0
    capture_misses: int = 0
    capture_errors: int = 0
    analyses_ok: int = 0
    analyses_failed: int = 0
    utterances: int = 0

    total_analysis_time: float = 0.0

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        duration = (self.end_time or datetime.now()) - self.start_time
        return {
            "duration_seconds": round(duration.total_seconds(), 1),
            "frames_captured": self.frames_captured,
            "capture_misses": self.capture_misses,
            "capture_errors": self.capture_errors,
            "analyses_ok": self.analyses_ok,
            "analyses_failed": self.analyses_failed,
            "utterances": self.utterances,
            "avg_analysis_ms": (
                round(self.total_analysis_time / self.analyses_ok * 1000, 1)
                if self.analyses_ok > 0 else 0
            ),
        }
