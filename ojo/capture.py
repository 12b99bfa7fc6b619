"""
Frame Capture Module

Frame sources for the perception cycle:
- CameraFrameSource: OpenCV camera/stream with a background grab thread,
  so capture_frame() returns the most recent frame without blocking
- ImageFileFrameSource: still image from disk (one-shot analysis, demos)

Frames are downscaled so the longer edge stays within ``max_size`` and
JPEG-encoded at ``quality``.

Usage:
    from ojo.capture import CameraFrameSource

    camera = CameraFrameSource(device=0)
    camera.start()
    frame = camera.capture_frame()   # Frame or None while not ready
    camera.stop()
"""

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Event, Lock, Thread
from typing import Optional, Union

from .config import config
from .exceptions import CaptureUnavailable
from .models import Frame

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """Synchronous, non-blocking source of encoded frames."""

    @abstractmethod
    def capture_frame(self) -> Optional[Frame]:
        """Return the most recent frame, or None when no frame is available."""
        raise NotImplementedError


def encode_frame(image, max_size: int = 640, quality: int = 70) -> Frame:
    """Downscale a BGR image array and encode it as a JPEG Frame."""
    import cv2

    if image is None or getattr(image, "size", 0) == 0:
        raise CaptureUnavailable("Empty image")

    height, width = image.shape[:2]
    longer = max(width, height)
    if max_size and longer > max_size:
        scale = max_size / float(longer)
        width = max(1, int(round(width * scale)))
        height = max(1, int(round(height * scale)))
        image = cv2.resize(image, (width, height), interpolation=cv2.INTER_AREA)

    ok, buffer = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
    if not ok:
        raise CaptureUnavailable("JPEG encoding failed")

    return Frame(
        data=buffer.tobytes(),
        mime_type="image/jpeg",
        captured_at=time.time(),
        width=width,
        height=height,
    )


def _parse_device(device: Union[int, str]) -> Union[int, str]:
    if isinstance(device, str) and device.strip().isdigit():
        return int(device.strip())
    return device


class CameraFrameSource(FrameSource):
    """OpenCV camera capture that always serves the latest frame."""

    def __init__(
        self,
        device: Union[int, str] = 0,
        width: int = 1280,
        height: int = 720,
        max_size: int = 640,
        quality: int = 70,
    ):
        self.device = _parse_device(device)
        self.width = width
        self.height = height
        self.max_size = max_size
        self.quality = quality

        self._cv_capture = None
        self._running = False
        self._stop_event = Event()
        self._grab_thread: Optional[Thread] = None
        self._lock = Lock()
        self._latest = None
        self._read_errors = 0

    @classmethod
    def from_env(cls) -> "CameraFrameSource":
        """Load from environment/.env"""
        return cls(
            device=config.get("OJO_CAMERA_DEVICE", "0"),
            width=config.get_int("OJO_CAMERA_WIDTH", 1280),
            height=config.get_int("OJO_CAMERA_HEIGHT", 720),
            max_size=config.get_int("OJO_IMAGE_MAX_SIZE", 640),
            quality=config.get_int("OJO_IMAGE_QUALITY", 70),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Open the device and start grabbing. Blocking; run off the event loop."""
        if self._running:
            return

        import cv2

        cap = cv2.VideoCapture(self.device)
        if not cap.isOpened():
            cap.release()
            raise CaptureUnavailable(f"Cannot open camera: {self.device}")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        # Keep the driver queue short so frames are recent
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        self._cv_capture = cap
        self._stop_event.clear()
        self._running = True
        self._grab_thread = Thread(target=self._grab_loop, name="camera-grab", daemon=True)
        self._grab_thread.start()
        logger.info(f"Camera started: {self.device}")

    def stop(self) -> None:
        """Stop grabbing and release the device."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        if self._grab_thread:
            self._grab_thread.join(timeout=2)
            self._grab_thread = None

        if self._cv_capture is not None:
            self._cv_capture.release()
            self._cv_capture = None

        with self._lock:
            self._latest = None

        logger.info(f"Camera stopped: {self.device}")

    @property
    def is_running(self) -> bool:
        return self._running

    def _grab_loop(self) -> None:
        while not self._stop_event.is_set():
            ret, image = self._cv_capture.read()
            if not ret or image is None:
                self._read_errors += 1
                if self._read_errors % 10 == 1:
                    logger.warning(f"Camera read error #{self._read_errors}")
                self._stop_event.wait(0.1)
                continue

            self._read_errors = 0
            with self._lock:
                self._latest = image

    # ------------------------------------------------------------------
    # FrameSource
    # ------------------------------------------------------------------
    def capture_frame(self) -> Optional[Frame]:
        if not self._running:
            return None

        with self._lock:
            image = self._latest
        if image is None:
            return None

        return encode_frame(image, self.max_size, self.quality)


class ImageFileFrameSource(FrameSource):
    """Serves one still image from disk on every capture."""

    def __init__(self, path: Union[str, Path], max_size: int = 640, quality: int = 70):
        self.path = Path(path)
        self.max_size = max_size
        self.quality = quality
        self._frame: Optional[Frame] = None

    def capture_frame(self) -> Optional[Frame]:
        if self._frame is None:
            import cv2

            if not self.path.exists():
                logger.warning(f"Image not found: {self.path}")
                return None
            image = cv2.imread(str(self.path))
            if image is None:
                logger.warning(f"Unreadable image: {self.path}")
                return None
            self._frame = encode_frame(image, self.max_size, self.quality)
        return self._frame
