"""
Custom exceptions for Ojo Electrónico
"""

__all__ = [
    "OjoError",
    "CaptureUnavailable",
    "AnalysisError",
    "SpeechError",
    "ConfigurationError",
]


class OjoError(Exception):
    """Base exception for all Ojo errors"""
    pass


class CaptureUnavailable(OjoError):
    """Frame source is not ready (device closed, no frame yet)"""
    pass


class AnalysisError(OjoError):
    """Remote scene analysis failed (transport, service or parse problem)"""

    def __init__(self, message: str, provider: str = "", status_code: int = 0):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class SpeechError(OjoError):
    """Speech synthesis failed for one utterance"""
    pass


class ConfigurationError(OjoError):
    """Configuration error"""
    pass
