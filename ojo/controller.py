"""
Perception Cycle Controller

Drives the assistance loop on a single asyncio event loop:

    activate()
        └─ WARMUP ──(W)──► CAPTURING ──frame──► ANALYZING ──ok──► SPEAKING
              ▲                │ no frame           │ error          │ done
              │◄──(R_retry)────┘                    ▼                │
              │◄──────────────(R_error)──────── ERROR_PAUSE          │
              └◄──────────────────(P)────────────────────────────────┘
    deactivate()  → IDLE from anywhere

Every asynchronous continuation (timer, analysis result, speech completion)
carries the generation it was scheduled under. ``deactivate()`` bumps the
generation, so anything still in flight becomes a no-op when it lands.

Usage:
    from ojo.controller import CycleController, CycleSettings

    controller = CycleController(camera, analyzer, speaker, CycleSettings())
    controller.subscribe(lambda update: print(update.state))
    controller.activate()
    ...
    controller.deactivate()
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from .capture import FrameSource
from .analyzer import Analyzer
from .speech import Speaker
from .config import config
from .exceptions import AnalysisError, CaptureUnavailable, ConfigurationError
from .models import CycleState, CycleStats, Description, Frame, StatusUpdate

logger = logging.getLogger(__name__)

StatusListener = Callable[[StatusUpdate], None]


@dataclass
class CycleSettings:
    """Timing and language options of the perception cycle."""
    warmup_delay_ms: int = 1000
    capture_retry_delay_ms: int = 1000
    analysis_error_delay_ms: int = 3000
    pacing_delay_ms: int = 2500
    target_language: str = "es"

    def __post_init__(self):
        for name in ("warmup_delay_ms", "capture_retry_delay_ms",
                     "analysis_error_delay_ms", "pacing_delay_ms"):
            value = getattr(self, name)
            if value is None or value < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {value!r}")
        if not self.target_language:
            raise ConfigurationError("target_language must not be empty")

    @classmethod
    def from_env(cls) -> "CycleSettings":
        """Load from environment/.env"""
        return cls(
            warmup_delay_ms=config.get_int("OJO_WARMUP_DELAY_MS", 1000),
            capture_retry_delay_ms=config.get_int("OJO_CAPTURE_RETRY_DELAY_MS", 1000),
            analysis_error_delay_ms=config.get_int("OJO_ANALYSIS_ERROR_DELAY_MS", 3000),
            pacing_delay_ms=config.get_int("OJO_PACING_DELAY_MS", 2500),
            target_language=config.get("OJO_TARGET_LANGUAGE", "es"),
        )


@dataclass
class CycleSession:
    """One activation, from activate() to deactivate()."""
    generation: int
    active: bool = True
    timer: Optional[asyncio.TimerHandle] = None
    stats: CycleStats = field(default_factory=CycleStats)

    def cancel_timer(self):
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class CycleController:
    """Capture → analyze → speak → pace state machine.

    All methods must be called from the event loop thread. The speaker's
    completion callback is the only entry point that may be invoked from
    another thread; it is marshalled back onto the loop.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        analyzer: Analyzer,
        speaker: Speaker,
        settings: Optional[CycleSettings] = None,
    ):
        self.frame_source = frame_source
        self.analyzer = analyzer
        self.speaker = speaker
        self.settings = settings or CycleSettings.from_env()

        self._state = CycleState.IDLE
        self._generation = 0
        self._session: Optional[CycleSession] = None
        self._last_result: Optional[Description] = None
        self._last_error: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._listeners: List[StatusListener] = []

        # Analysis call currently in flight, possibly from an older generation
        self._analysis_task: Optional[asyncio.Task] = None
        self._analysis_generation: Optional[int] = None

    # ------------------------------------------------------------------
    # Host controls
    # ------------------------------------------------------------------
    def activate(self) -> None:
        """Start a new session. No-op if already active."""
        if self._session is not None:
            return

        self._loop = asyncio.get_running_loop()
        self._session = CycleSession(generation=self._generation)
        self._last_result = None
        self._last_error = None

        logger.info(f"Assistance activated (generation {self._generation})")
        self._set_state(CycleState.WARMUP)
        if self._is_current(self._session.generation):
            self._schedule(self.settings.warmup_delay_ms, self._on_warmup_elapsed)

    def deactivate(self) -> None:
        """Stop the session. No-op if already idle."""
        session = self._session
        if session is None:
            return

        session.active = False
        self._generation += 1
        self._session = None
        session.cancel_timer()

        try:
            self.speaker.stop()
        except Exception as e:
            logger.warning(f"Failed to stop speech: {e}")

        session.stats.end_time = datetime.now()
        logger.info(f"Assistance stopped: {session.stats.to_dict()}")
        self._set_state(CycleState.IDLE)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    def current_state(self) -> CycleState:
        return self._state

    def last_description(self) -> Optional[str]:
        """Text of the most recent description, if any."""
        return self._last_result.text if self._last_result else None

    def last_result(self) -> Optional[Description]:
        return self._last_result

    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_active(self) -> bool:
        return self._session is not None

    @property
    def stats(self) -> Optional[CycleStats]:
        return self._session.stats if self._session else None

    def status(self) -> StatusUpdate:
        return StatusUpdate(
            state=self._state,
            description=self.last_description(),
            error=self._last_error,
            generation=self._generation,
        )

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Cycle steps
    # ------------------------------------------------------------------
    def _on_warmup_elapsed(self, generation: int) -> None:
        self._capture(generation)

    def _on_error_pause_elapsed(self, generation: int) -> None:
        if self._transition(generation, CycleState.WARMUP):
            self._capture(generation)

    def _capture(self, generation: int) -> None:
        if self._analysis_in_flight():
            # Result of a deactivated session has not landed yet
            logger.debug("Previous analysis still in flight, waiting before capture")
            self._analysis_task.add_done_callback(
                lambda _task: self._resume_capture(generation)
            )
            return

        if not self._transition(generation, CycleState.CAPTURING):
            return
        session = self._session

        try:
            frame = self.frame_source.capture_frame()
        except CaptureUnavailable:
            frame = None
        except Exception as e:
            session.stats.capture_errors += 1
            self._pause_after_error(generation, e, "Frame capture failed")
            return

        if frame is None:
            session.stats.capture_misses += 1
            logger.warning(
                f"Camera not ready, retrying in {self.settings.capture_retry_delay_ms} ms"
            )
            if self._transition(generation, CycleState.WARMUP):
                self._schedule(self.settings.capture_retry_delay_ms, self._on_warmup_elapsed)
            return

        session.stats.frames_captured += 1
        if not self._transition(generation, CycleState.ANALYZING):
            return

        self._analysis_generation = generation
        self._analysis_task = self._loop.create_task(self._analyze(frame, generation))

    def _resume_capture(self, generation: int) -> None:
        if self._is_current(generation) and self._state is CycleState.WARMUP:
            self._capture(generation)

    async def _analyze(self, frame: Frame, generation: int) -> None:
        started = time.monotonic()
        try:
            description = await self.analyzer.analyze(frame)
        except AnalysisError as e:
            self._on_analysis_failed(generation, e)
            return
        except Exception as e:
            logger.error(f"Unexpected analyzer failure: {e}", exc_info=True)
            self._on_analysis_failed(generation, e)
            return

        self._on_analysis_succeeded(generation, description, time.monotonic() - started)

    def _on_analysis_succeeded(
        self,
        generation: int,
        description: Description,
        elapsed: float,
    ) -> None:
        if not self._is_current(generation):
            logger.debug(f"Discarding description from generation {generation}")
            return

        session = self._session
        session.stats.analyses_ok += 1
        session.stats.total_analysis_time += elapsed

        self._last_result = description
        self._last_error = None
        logger.info(f"Scene: {description.text}")

        if not self._transition(generation, CycleState.SPEAKING):
            return

        text = description.text.strip()
        if not text:
            self._on_speech_done(generation)
            return

        session.stats.utterances += 1
        try:
            self.speaker.speak(text, self._completion_callback(generation))
        except Exception as e:
            # SpeechError counts as a finished utterance
            logger.warning(f"Speech failed: {e}")
            self._on_speech_done(generation)

    def _on_analysis_failed(self, generation: int, error: Exception) -> None:
        if not self._is_current(generation):
            logger.debug(f"Discarding analysis error from generation {generation}: {error}")
            return

        self._session.stats.analyses_failed += 1
        self._pause_after_error(generation, error, "Scene analysis failed")

    def _pause_after_error(self, generation: int, error: Exception, what: str) -> None:
        self._last_error = str(error) or error.__class__.__name__
        logger.warning(
            f"{what}: {self._last_error} "
            f"(retrying in {self.settings.analysis_error_delay_ms} ms)"
        )

        if self._transition(generation, CycleState.ERROR_PAUSE):
            self._schedule(self.settings.analysis_error_delay_ms, self._on_error_pause_elapsed)

    def _completion_callback(self, generation: int) -> Callable[[], None]:
        """One-shot, thread-safe speech completion callback."""
        loop = self._loop
        fired = False

        def on_done():
            nonlocal fired
            if fired:
                return
            fired = True
            try:
                loop.call_soon_threadsafe(self._on_speech_done, generation)
            except RuntimeError:
                # Loop already closed
                logger.debug("Speech finished after event loop shutdown")

        return on_done

    def _on_speech_done(self, generation: int) -> None:
        if not self._is_current(generation) or self._state is not CycleState.SPEAKING:
            return

        if self._transition(generation, CycleState.WARMUP):
            self._schedule(self.settings.pacing_delay_ms, self._on_warmup_elapsed)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _is_current(self, generation: int) -> bool:
        session = self._session
        return (
            session is not None
            and session.active
            and generation == self._generation
        )

    def _analysis_in_flight(self) -> bool:
        return (
            self._analysis_task is not None
            and not self._analysis_task.done()
            and self._analysis_generation != self._generation
        )

    def _schedule(self, delay_ms: int, step: Callable[[int], None]) -> None:
        session = self._session
        session.cancel_timer()
        session.timer = self._loop.call_later(
            delay_ms / 1000.0, self._fire_timer, session.generation, step
        )

    def _fire_timer(self, generation: int, step: Callable[[int], None]) -> None:
        if not self._is_current(generation):
            return
        self._session.timer = None
        step(generation)

    def _transition(self, generation: int, state: CycleState) -> bool:
        """Move to ``state``; False when a listener ended the session meanwhile."""
        if not self._is_current(generation):
            return False
        self._set_state(state)
        return self._is_current(generation)

    def _set_state(self, state: CycleState) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        logger.debug(f"State: {previous.value} -> {state.value}")
        self._notify()

    def _notify(self) -> None:
        update = self.status()
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception as e:
                logger.warning(f"Status listener error: {e}", exc_info=True)
