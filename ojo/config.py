"""
Ojo Configuration Module

Handles loading configuration from:
1. .env file
2. Environment variables
3. Default values

Usage:
    from ojo.config import config

    lang = config.get("OJO_TARGET_LANGUAGE", "es")
    config.set("OJO_PACING_DELAY_MS", "3000")
    config.save()
"""

__all__ = ["config", "Config", "DEFAULTS", "CONFIG_CATEGORIES"]

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULTS = {
    # Perception cycle timing
    "OJO_WARMUP_DELAY_MS": "1000",         # camera warm-up before first capture
    "OJO_CAPTURE_RETRY_DELAY_MS": "1000",  # camera not ready
    "OJO_ANALYSIS_ERROR_DELAY_MS": "3000", # vision service failure
    "OJO_PACING_DELAY_MS": "2500",         # pause after each spoken description
    "OJO_TARGET_LANGUAGE": "es",

    # Vision service
    "OJO_LLM_PROVIDER": "gemini",          # gemini, ollama, openai
    "OJO_MODEL": "gemini-2.5-flash",
    "OJO_GEMINI_API_KEY": "",
    "OJO_OPENAI_API_KEY": "",
    "OJO_OLLAMA_URL": "http://localhost:11434",
    "OJO_LLM_TIMEOUT": "30",
    "OJO_LLM_TEMPERATURE": "0.3",          # low temperature for precision

    # Camera
    "OJO_CAMERA_DEVICE": "0",              # OpenCV index or stream URL
    "OJO_CAMERA_WIDTH": "1280",
    "OJO_CAMERA_HEIGHT": "720",
    "OJO_IMAGE_MAX_SIZE": "640",           # longer edge, enough for object detection
    "OJO_IMAGE_QUALITY": "70",             # JPEG quality 1-100

    # Voice
    "OJO_TTS_ENGINE": "auto",              # auto, espeak, spd-say, say, powershell
    "OJO_TTS_VOICE": "",                   # empty = derived from target language
    "OJO_TTS_RATE": "190",                 # slightly faster than engine default

    # Logging
    "OJO_LOG_LEVEL": "INFO",
    "OJO_LOG_FILE": "",
}

# Configuration categories for `ojo config --show` and full saves
CONFIG_CATEGORIES = {
    "Perception Cycle": [
        ("OJO_WARMUP_DELAY_MS", "Warm-up Delay (ms)", "Delay before the first capture after activation"),
        ("OJO_CAPTURE_RETRY_DELAY_MS", "Capture Retry (ms)", "Retry delay when the camera has no frame"),
        ("OJO_ANALYSIS_ERROR_DELAY_MS", "Error Retry (ms)", "Retry delay after a failed analysis"),
        ("OJO_PACING_DELAY_MS", "Pacing Delay (ms)", "Pause after each spoken description"),
        ("OJO_TARGET_LANGUAGE", "Language", "Language for descriptions, speech and labels (es, en)"),
    ],
    "Vision Service": [
        ("OJO_LLM_PROVIDER", "Provider", "Scene description provider: gemini, ollama, openai"),
        ("OJO_MODEL", "Model", "Vision model name"),
        ("OJO_GEMINI_API_KEY", "Gemini API Key", "API key for Google Gemini"),
        ("OJO_OPENAI_API_KEY", "OpenAI API Key", "API key for OpenAI"),
        ("OJO_OLLAMA_URL", "Ollama URL", "Ollama server URL"),
        ("OJO_LLM_TIMEOUT", "Timeout (seconds)", "HTTP timeout per analysis request"),
        ("OJO_LLM_TEMPERATURE", "Temperature", "Sampling temperature"),
    ],
    "Camera": [
        ("OJO_CAMERA_DEVICE", "Device", "OpenCV device index or stream URL"),
        ("OJO_CAMERA_WIDTH", "Width", "Requested capture width"),
        ("OJO_CAMERA_HEIGHT", "Height", "Requested capture height"),
        ("OJO_IMAGE_MAX_SIZE", "Max Size", "Longer edge of frames sent for analysis"),
        ("OJO_IMAGE_QUALITY", "JPEG Quality", "JPEG quality of frames sent for analysis"),
    ],
    "Voice": [
        ("OJO_TTS_ENGINE", "TTS Engine", "Text-to-speech engine: auto, espeak, spd-say, say, powershell"),
        ("OJO_TTS_VOICE", "TTS Voice", "Engine voice name (empty = from language)"),
        ("OJO_TTS_RATE", "TTS Rate", "Speech rate (words per minute)"),
    ],
    "Logging": [
        ("OJO_LOG_LEVEL", "Log Level", "Logging level: DEBUG, INFO, WARNING, ERROR"),
        ("OJO_LOG_FILE", "Log File", "Path to log file (empty = console only)"),
    ],
}

SECRET_MARKERS = ("KEY", "PASS", "TOKEN")


class Config:
    """Configuration manager for Ojo"""

    def __init__(self):
        self._config: Dict[str, str] = {}
        self._env_file: Optional[Path] = None
        self._load()

    def _find_env_file(self) -> Optional[Path]:
        """Find .env file in current directory or parent directories"""
        current = Path.cwd()

        for _ in range(5):
            env_path = current / ".env"
            if env_path.exists():
                return env_path
            current = current.parent

        return None

    def _load(self):
        """Load configuration from .env file and environment"""
        self._config = DEFAULTS.copy()

        self._env_file = self._find_env_file()
        if self._env_file:
            self._load_env_file(self._env_file)

        # Environment wins over .env
        for key in DEFAULTS.keys():
            env_val = os.environ.get(key)
            if env_val is not None:
                self._config[key] = env_val

    def _load_env_file(self, path: Path):
        """Load configuration from .env file"""
        try:
            with open(path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#"):
                        continue
                    if "=" in line:
                        key, _, value = line.partition("=")
                        key = key.strip()
                        value = value.strip().strip('"').strip("'")
                        if key in DEFAULTS:
                            self._config[key] = value
        except OSError as e:
            logger.debug(f"Could not read {path}: {e}")

    def get(self, key: str, default: Any = None) -> str:
        """Get configuration value"""
        return self._config.get(key, default or DEFAULTS.get(key, ""))

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get configuration value as boolean"""
        val = self.get(key, str(default))
        return val.lower() in ("true", "1", "yes", "on")

    def get_int(self, key: str, default: int = 0) -> int:
        """Get configuration value as integer"""
        try:
            return int(self.get(key, str(default)))
        except ValueError:
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        """Get configuration value as float"""
        try:
            return float(self.get(key, str(default)))
        except ValueError:
            return default

    def set(self, key: str, value: str):
        """Set configuration value"""
        self._config[key] = str(value)

    def save(self, path: Optional[Path] = None, full: bool = False):
        """Save configuration to .env file.

        Args:
            path: Path to save to (default: current .env file)
            full: If True, rewrite the file with every known key.
                  If False, only update keys already present and keep
                  everything else (comments, user variables) as is.
        """
        if path is None:
            path = self._env_file or Path.cwd() / ".env"

        if path.exists() and not full:
            with open(path, "r") as f:
                existing_lines = f.readlines()

            updated_lines = []
            seen = set()
            for line in existing_lines:
                stripped = line.strip()
                if stripped and not stripped.startswith("#") and "=" in stripped:
                    key = stripped.split("=", 1)[0].strip()
                    if key in self._config:
                        updated_lines.append(f"{key}={self._config[key]}\n")
                        seen.add(key)
                        continue
                updated_lines.append(line)

            # Append changed keys the file did not have yet
            for key, value in self._config.items():
                if key not in seen and value != DEFAULTS.get(key):
                    updated_lines.append(f"{key}={value}\n")

            with open(path, "w") as f:
                f.writelines(updated_lines)
        else:
            lines = []
            for category, items in CONFIG_CATEGORIES.items():
                lines.append(f"\n# {category}")
                for key, label, desc in items:
                    value = self._config.get(key, DEFAULTS.get(key, ""))
                    lines.append(f"{key}={value}")

            with open(path, "w") as f:
                f.write("# Ojo Electronico Configuration\n")
                f.write("# Generated by: ojo config --save\n")
                f.write("\n".join(lines))
                f.write("\n")

        self._env_file = path

    def to_dict(self, mask_secrets: bool = False) -> Dict[str, str]:
        """Get all configuration as dictionary"""
        data = self._config.copy()
        if mask_secrets:
            for key, value in data.items():
                if value and any(marker in key for marker in SECRET_MARKERS):
                    data[key] = value[:4] + "****"
        return data

    def reload(self):
        """Reload configuration from files"""
        self._load()

    @property
    def env_file(self) -> Optional[Path]:
        return self._env_file


def parse_assignments(pairs: List[str]) -> Dict[str, str]:
    """Parse ``KEY=VALUE`` strings given on the command line."""
    result = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip().upper()
        if not sep or not key:
            raise ValueError(f"Expected KEY=VALUE, got: {pair!r}")
        if not key.startswith("OJO_"):
            key = f"OJO_{key}"
        if key not in DEFAULTS:
            raise KeyError(key)
        result[key] = value.strip()
    return result


# Global config instance
config = Config()
