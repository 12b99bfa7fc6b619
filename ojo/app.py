"""
Terminal host for the perception cycle.

Plays the part of the big start/stop button, the status badge and the
"detected surroundings" box: ENTER toggles assistance, ``q`` quits, and
every status change is rendered with Rich.

Usage:
    from ojo.app import create_assistant

    assistant = create_assistant(language="es")
    asyncio.run(assistant.run())
"""

import asyncio
import logging
import sys
import threading
from dataclasses import replace
from typing import IO, Optional

from rich.console import Console
from rich.panel import Panel

from .analyzer import Analyzer, AnalyzerConfig, VisionAnalyzer
from .capture import CameraFrameSource, FrameSource
from .controller import CycleController, CycleSettings
from .diagnostics import console as default_console
from .exceptions import OjoError
from .i18n import Messages, get_messages
from .models import CycleState, StatusUpdate
from .speech import SilentSpeaker, Speaker, TTSConfig, TTSSpeaker

logger = logging.getLogger(__name__)

STATE_STYLES = {
    CycleState.IDLE: ("⏸", "bold white on grey37"),
    CycleState.WARMUP: ("⏳", "bold white on grey50"),
    CycleState.CAPTURING: ("📷", "bold white on grey50"),
    CycleState.ANALYZING: ("🧠", "bold white on blue"),
    CycleState.SPEAKING: ("🔊", "bold white on green"),
    CycleState.ERROR_PAUSE: ("⚠", "bold white on red"),
}

QUIT_WORDS = {"q", "quit", "exit", "salir"}


class Assistant:
    """Wires a CycleController to the keyboard, the camera and the console."""

    def __init__(
        self,
        controller: CycleController,
        messages: Optional[Messages] = None,
        console: Optional[Console] = None,
        announce: bool = True,
    ):
        self.controller = controller
        self.messages = messages or get_messages(controller.settings.target_language)
        self.console = console or default_console
        self.announce = announce

        self._camera_task: Optional[asyncio.Task] = None
        self._shown_description: Optional[str] = None
        self._unsubscribe = controller.subscribe(self._on_status)

    @property
    def frame_source(self) -> FrameSource:
        return self.controller.frame_source

    @property
    def speaker(self) -> Speaker:
        return self.controller.speaker

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------
    async def run(self, start_active: bool = False, input_stream: Optional[IO[str]] = None) -> None:
        """Toggle on each input line until ``q`` or end of input."""
        loop = asyncio.get_running_loop()
        lines: asyncio.Queue = asyncio.Queue()
        reader = threading.Thread(
            target=_read_lines,
            args=(input_stream or sys.stdin, loop, lines),
            name="stdin-reader",
            daemon=True,
        )
        reader.start()

        self.render_header()
        if start_active:
            await self.start()

        try:
            while True:
                line = await lines.get()
                if line is None or line.strip().lower() in QUIT_WORDS:
                    break
                await self.toggle()
        finally:
            await self.shutdown()

    def render_header(self) -> None:
        self.console.rule(f"[bold yellow]{self.messages.title.upper()}")
        self.console.print(Panel(self.messages.initial_hint, title=self.messages.detected_header))
        self.console.print(f"[dim]{self.messages.controls_hint}[/dim]")

    # ------------------------------------------------------------------
    # Toggle
    # ------------------------------------------------------------------
    async def toggle(self) -> None:
        if self.controller.is_active:
            await self.stop()
        else:
            await self.start()

    async def start(self) -> None:
        if self.controller.is_active:
            return

        if self.announce:
            self.speaker.speak(self.messages.assistance_started)
        self._shown_description = None
        self.controller.activate()

        if isinstance(self.frame_source, CameraFrameSource):
            generation = self.controller.generation
            self._camera_task = asyncio.get_running_loop().create_task(
                self._open_camera(generation)
            )

    async def stop(self) -> None:
        if not self.controller.is_active:
            return

        self.controller.deactivate()
        if self.announce:
            self.speaker.speak(self.messages.assistance_stopped)
        await self._close_camera()

    async def shutdown(self) -> None:
        if self.controller.is_active:
            self.controller.deactivate()
        self.speaker.stop()
        await self._close_camera()
        self._unsubscribe()

    # ------------------------------------------------------------------
    # Camera lifecycle follows the active flag
    # ------------------------------------------------------------------
    async def _open_camera(self, generation: int) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.frame_source.start)
        except OjoError as e:
            # Cycle keeps retrying; the user gets told once
            logger.error(f"Camera access error: {e}")
            self.console.print(f"[bold white on red] {self.messages.camera_error} [/]")
            return

        logger.debug("Camera ready")
        if not self.controller.is_active or self.controller.generation != generation:
            await loop.run_in_executor(None, self.frame_source.stop)

    async def _close_camera(self) -> None:
        task = self._camera_task
        self._camera_task = None
        if task is not None:
            await task
        if isinstance(self.frame_source, CameraFrameSource):
            await asyncio.get_running_loop().run_in_executor(None, self.frame_source.stop)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------
    def _on_status(self, update: StatusUpdate) -> None:
        icon, style = STATE_STYLES.get(update.state, ("?", "bold"))
        label = self.messages.status_label(update.state)
        self.console.print(f"[{style}] {icon} {label} [/]")

        if update.state is CycleState.ERROR_PAUSE and update.error:
            self.console.print(f"[red]{update.error}[/red]")

        if update.description and update.description != self._shown_description:
            self._shown_description = update.description
            self.console.print(Panel(
                f"[bold]{update.description}[/bold]",
                title=self.messages.detected_header,
                border_style="yellow",
            ))


def _read_lines(stream: IO[str], loop: asyncio.AbstractEventLoop, lines: asyncio.Queue) -> None:
    try:
        for line in stream:
            loop.call_soon_threadsafe(lines.put_nowait, line)
        loop.call_soon_threadsafe(lines.put_nowait, None)
    except RuntimeError:
        # Event loop closed while waiting for input
        return


def create_assistant(
    device: Optional[str] = None,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    language: Optional[str] = None,
    quiet: bool = False,
    frame_source: Optional[FrameSource] = None,
    analyzer: Optional[Analyzer] = None,
    speaker: Optional[Speaker] = None,
    console: Optional[Console] = None,
) -> Assistant:
    """Build an Assistant from configuration plus command-line overrides."""
    settings = CycleSettings.from_env()
    if language:
        settings = replace(settings, target_language=language)
    lang = settings.target_language

    if frame_source is None:
        camera = CameraFrameSource.from_env()
        if device is not None:
            camera = CameraFrameSource(
                device=device,
                width=camera.width,
                height=camera.height,
                max_size=camera.max_size,
                quality=camera.quality,
            )
        frame_source = camera

    if analyzer is None:
        analyzer_config = AnalyzerConfig.from_env(provider=provider, model=model)
        analyzer_config.target_language = lang
        analyzer = VisionAnalyzer(analyzer_config)

    if speaker is None:
        if quiet:
            speaker = SilentSpeaker()
        else:
            tts_config = TTSConfig.from_env()
            tts_config.language = lang
            speaker = TTSSpeaker(tts_config)

    controller = CycleController(frame_source, analyzer, speaker, settings)
    return Assistant(controller, messages=get_messages(lang), console=console, announce=not quiet)
