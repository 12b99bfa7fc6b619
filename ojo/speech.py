"""
Text-to-Speech for Ojo

Speaks descriptions through a system TTS engine run as a subprocess, with
automatic fallback:
- espeak / espeak-ng (Linux, lightweight)
- spd-say (Linux, speech-dispatcher)
- say (macOS)
- powershell (Windows)

Each ``speak()`` replaces the utterance in progress. The completion
callback fires once the engine exits (successfully or not), from a
watcher thread; ``stop()`` kills the engine and the cancelled utterance's
callback never fires.

Usage:
    from ojo.speech import TTSSpeaker

    speaker = TTSSpeaker()
    speaker.speak("Camino despejado.", on_done=lambda: print("done"))
    speaker.stop()
"""

import logging
import platform
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from threading import RLock, Thread
from typing import Callable, List, Optional

from .config import config
from .exceptions import SpeechError
from .i18n import get_messages

logger = logging.getLogger(__name__)

DoneCallback = Optional[Callable[[], None]]


class Speaker(ABC):
    """Asynchronous speech capability with a completion callback."""

    @abstractmethod
    def speak(self, text: str, on_done: DoneCallback = None) -> None:
        """Start speaking ``text``, cancelling any utterance in progress."""
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        """Cancel the current utterance; its callback must not fire."""
        raise NotImplementedError


class SilentSpeaker(Speaker):
    """Speaker that says nothing and completes immediately (--quiet)."""

    def speak(self, text: str, on_done: DoneCallback = None) -> None:
        logger.debug(f"(silent) {text}")
        if on_done:
            on_done()

    def stop(self) -> None:
        pass


class TTSEngine(str, Enum):
    AUTO = "auto"
    ESPEAK = "espeak"
    ESPEAK_NG = "espeak-ng"
    SPD_SAY = "spd-say"
    SAY = "say"  # macOS
    POWERSHELL = "powershell"  # Windows


@dataclass
class TTSConfig:
    """TTS configuration."""
    engine: TTSEngine = TTSEngine.AUTO
    voice: str = ""
    rate: int = 190
    language: str = "es"

    @classmethod
    def from_env(cls) -> "TTSConfig":
        """Load from environment/.env"""
        engine_str = config.get("OJO_TTS_ENGINE", "auto").lower()
        try:
            engine = TTSEngine(engine_str)
        except ValueError:
            logger.warning(f"Unknown TTS engine '{engine_str}', using auto")
            engine = TTSEngine.AUTO

        return cls(
            engine=engine,
            voice=config.get("OJO_TTS_VOICE", ""),
            rate=config.get_int("OJO_TTS_RATE", 190),
            language=config.get("OJO_TARGET_LANGUAGE", "es"),
        )


def clean_text(text: str) -> str:
    """Clean text for TTS command lines."""
    if not text:
        return ""
    text = text.replace('"', '').replace('`', '')
    text = ' '.join(text.split())
    return text[:500]


def engine_priority(system: Optional[str] = None) -> List[TTSEngine]:
    """Engines to try, in order, for the current platform."""
    system = (system or platform.system()).lower()
    if system == "darwin":
        return [TTSEngine.SAY]
    elif system == "windows":
        return [TTSEngine.POWERSHELL]
    return [TTSEngine.ESPEAK_NG, TTSEngine.ESPEAK, TTSEngine.SPD_SAY]


def get_available_engines() -> List[str]:
    """Names of TTS engines found on PATH."""
    return [
        e.value for e in TTSEngine
        if e is not TTSEngine.AUTO and shutil.which(e.value)
    ]


class TTSSpeaker(Speaker):
    """Subprocess TTS speaker with single-utterance semantics."""

    def __init__(self, tts_config: Optional[TTSConfig] = None):
        self.config = tts_config or TTSConfig.from_env()
        self.messages = get_messages(self.config.language)

        self._lock = RLock()
        self._process: Optional[subprocess.Popen] = None
        self._utterance = 0

    # ------------------------------------------------------------------
    # Speaker
    # ------------------------------------------------------------------
    def speak(self, text: str, on_done: DoneCallback = None) -> None:
        text = clean_text(text)

        with self._lock:
            self._kill_locked()
            self._utterance += 1
            utterance = self._utterance

            if not text:
                process = None
            else:
                process = self._spawn(text)
                self._process = process

        if not text:
            if on_done:
                on_done()
            return

        if process is None:
            logger.warning("No TTS engine available. Run: ojo check")
            if on_done:
                on_done()
            return

        Thread(
            target=self._wait_for_exit,
            args=(process, utterance, on_done),
            name="tts-wait",
            daemon=True,
        ).start()

    def stop(self) -> None:
        with self._lock:
            self._utterance += 1
            self._kill_locked()

    def is_speaking(self) -> bool:
        with self._lock:
            return self._process is not None and self._process.poll() is None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _engines_to_try(self) -> List[TTSEngine]:
        priority = engine_priority()
        if self.config.engine == TTSEngine.AUTO:
            return priority
        # Specified engine first, then the platform fallbacks
        return [self.config.engine] + [e for e in priority if e != self.config.engine]

    def _spawn(self, text: str) -> Optional[subprocess.Popen]:
        for engine in self._engines_to_try():
            try:
                return subprocess.Popen(
                    self.build_command(engine, text),
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    stdin=subprocess.DEVNULL,
                )
            except (OSError, SpeechError) as e:
                logger.debug(f"TTS engine {engine.value} failed: {e}")
                continue
        return None

    def build_command(self, engine: TTSEngine, text: str) -> List[str]:
        """Command line speaking ``text`` with ``engine``."""
        rate = self.config.rate
        voice = self.config.voice

        if engine in (TTSEngine.ESPEAK, TTSEngine.ESPEAK_NG):
            return [engine.value, "-s", str(rate), "-v", voice or self.messages.espeak_voice, text]
        if engine == TTSEngine.SPD_SAY:
            cmd = ["spd-say", "--wait", "-l", self.messages.espeak_voice]
            if voice:
                cmd.extend(["-y", voice])
            cmd.append(text)
            return cmd
        if engine == TTSEngine.SAY:
            cmd = ["say", "-r", str(rate)]
            voice = voice or self.messages.say_voice
            if voice:
                cmd.extend(["-v", voice])
            cmd.append(text)
            return cmd
        if engine == TTSEngine.POWERSHELL:
            escaped = text.replace("'", "''")
            script = (
                "Add-Type -AssemblyName System.Speech; "
                "$s = New-Object System.Speech.Synthesis.SpeechSynthesizer; "
                f"$s.Speak('{escaped}')"
            )
            return ["powershell", "-NoProfile", "-Command", script]
        raise SpeechError(f"No command for engine: {engine.value}")

    def _kill_locked(self) -> None:
        process = self._process
        self._process = None
        if process is not None and process.poll() is None:
            try:
                process.terminate()
            except OSError as e:
                logger.debug(f"Failed to terminate TTS process: {e}")

    def _wait_for_exit(self, process: subprocess.Popen, utterance: int, on_done: DoneCallback) -> None:
        returncode = process.wait()

        # stop() takes the same lock, so a cancelled utterance never calls back
        with self._lock:
            if self._process is process:
                self._process = None
            if utterance != self._utterance:
                return

            if returncode != 0:
                # Failed utterances still complete
                logger.warning(f"TTS engine exited with code {returncode}")
            if on_done:
                on_done()
