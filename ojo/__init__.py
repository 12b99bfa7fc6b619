"""
Ojo Electrónico - spoken scene descriptions for visually impaired users

Captures a camera frame, asks a remote vision model to describe it and
speaks the answer, over and over while assistance is active.

Heavy modules (OpenCV, requests) are imported only when accessed.
"""

__version__ = "0.1.0"
__license__ = "Apache-2.0"


def __getattr__(name):
    """Lazy import handler - imports modules only when accessed."""

    if name in ("CycleController", "CycleSettings", "CycleSession"):
        from . import controller
        return getattr(controller, name)

    if name in ("CycleState", "Frame", "Description", "StatusUpdate", "CycleStats"):
        from . import models
        return getattr(models, name)

    if name in ("FrameSource", "CameraFrameSource", "ImageFileFrameSource", "encode_frame"):
        from . import capture
        return getattr(capture, name)

    if name in ("Analyzer", "VisionAnalyzer", "AnalyzerConfig"):
        from . import analyzer
        return getattr(analyzer, name)

    if name in ("Speaker", "TTSSpeaker", "SilentSpeaker", "TTSConfig"):
        from . import speech
        return getattr(speech, name)

    if name in ("OjoError", "CaptureUnavailable", "AnalysisError", "SpeechError", "ConfigurationError"):
        from . import exceptions
        return getattr(exceptions, name)

    if name in ("Assistant", "create_assistant"):
        from . import app
        return getattr(app, name)

    if name == "config":
        from .config import config
        return config

    raise AttributeError(f"module 'ojo' has no attribute '{name}'")


__all__ = [
    # Core
    "CycleController",
    "CycleSettings",
    "CycleSession",
    "CycleState",
    "Frame",
    "Description",
    "StatusUpdate",
    "CycleStats",
    # Collaborators
    "FrameSource",
    "CameraFrameSource",
    "ImageFileFrameSource",
    "encode_frame",
    "Analyzer",
    "VisionAnalyzer",
    "AnalyzerConfig",
    "Speaker",
    "TTSSpeaker",
    "SilentSpeaker",
    "TTSConfig",
    # Host
    "Assistant",
    "create_assistant",
    "config",
    # Exceptions
    "OjoError",
    "CaptureUnavailable",
    "AnalysisError",
    "SpeechError",
    "ConfigurationError",
]
