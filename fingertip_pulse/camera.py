"""
Camera acquisition.

Opens the rear camera at the requested resolution and hands back a
:class:`StreamHandle`.  Uses picamera2 on Raspberry Pi OS and falls back to
OpenCV VideoCapture (any webcam) when picamera2 is unavailable.

A constant light source ("torch") makes the fingertip signal far more
stable, but it is an enhancement, not a requirement: when an illumination
driver is supplied, it is switched on after the stream opens and off before
the stream is released, and any failure doing so is logged and ignored.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Protocol, Tuple

import cv2
import numpy as np

from fingertip_pulse.config import CameraConstraints
from fingertip_pulse.errors import CameraAccessError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Try importing picamera2 (only available on Raspberry Pi OS)
# ---------------------------------------------------------------------------
try:
    from picamera2 import Picamera2
    from libcamera import Transform
    _PICAMERA2_AVAILABLE = True
except ImportError:
    _PICAMERA2_AVAILABLE = False
    logger.debug("picamera2 not found – using OpenCV VideoCapture.")


class Illumination(Protocol):
    """A light source that can stay on for the whole measurement."""

    def enable(self) -> None: ...

    def disable(self) -> None: ...


class StreamHandle:
    """
    An open camera stream.

    Only the session controller holds one; nothing else should read from or
    close it.
    """

    def __init__(
        self,
        device: "Picamera2 | cv2.VideoCapture",
        backend: str,
        constraints: CameraConstraints,
    ) -> None:
        self.device = device
        self.backend = backend
        self.constraints = constraints
        self.torch_enabled = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def read_frame(self) -> np.ndarray | None:
        """
        Capture a single frame.

        Returns
        -------
        numpy.ndarray
            BGR image array (H × W × 3, dtype uint8), or *None* on failure.
        """
        if self._closed:
            raise RuntimeError("Stream is closed.")
        if self.backend == "picamera2":
            return self._read_picamera2()
        return self._read_opencv()

    def stop(self) -> None:
        """Stop the device and release it.  Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        if self.backend == "picamera2":
            self.device.stop()
            self.device.close()
        else:
            self.device.release()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _read_picamera2(self) -> np.ndarray | None:
        frame = self.device.capture_array("main")
        if frame is None:
            logger.warning("capture_array returned None.")
            return None
        # Drop alpha channel if camera returned 4-channel XRGB/RGBA
        if frame.ndim == 3 and frame.shape[2] == 4:
            frame = frame[:, :, :3]
        # picamera2 RGB888 → OpenCV BGR
        return cv2.cvtColor(frame, cv2.COLOR_RGB2BGR)

    def _read_opencv(self) -> np.ndarray | None:
        ok, frame = self.device.read()
        if not ok:
            logger.warning("VideoCapture.read() returned False.")
            return None
        if self.constraints.flip_horizontal:
            frame = cv2.flip(frame, 1)
        return frame


class Camera:
    """
    Camera provider.

    Parameters
    ----------
    illumination:
        Optional light source.  When omitted the device has no
        constant-illumination capability and none is attempted.
    use_picamera2:
        Force a backend; defaults to picamera2 whenever it is importable.
    """

    def __init__(
        self,
        illumination: Optional[Illumination] = None,
        use_picamera2: Optional[bool] = None,
    ) -> None:
        self.illumination = illumination
        self._use_picamera2 = (
            _PICAMERA2_AVAILABLE if use_picamera2 is None else use_picamera2
        )

    @property
    def supports_illumination(self) -> bool:
        return self.illumination is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, constraints: CameraConstraints | None = None) -> StreamHandle:
        """
        Open the camera described by *constraints*.

        Raises
        ------
        CameraAccessError
            If the device does not exist, cannot be opened, or access
            is denied by the OS.
        """
        constraints = constraints or CameraConstraints()
        # Opening a device can block for a second or more.
        opening = asyncio.ensure_future(asyncio.to_thread(self._open_device, constraints))
        try:
            handle = await asyncio.shield(opening)
        except asyncio.CancelledError:
            # The worker thread still finishes the open; release what it returns.
            opening.add_done_callback(self._close_abandoned)
            raise
        logger.info(
            "Camera opened – backend=%s resolution=%s fps=%d",
            handle.backend,
            constraints.resolution,
            constraints.fps,
        )
        if self.supports_illumination:
            handle.torch_enabled = self._set_torch(True)
        return handle

    def close(self, handle: StreamHandle | None) -> None:
        """Switch the torch off (best-effort) and release *handle*."""
        if handle is None or handle.closed:
            return
        if handle.torch_enabled:
            self._set_torch(False)
            handle.torch_enabled = False
        handle.stop()
        logger.info("Camera closed.")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _close_abandoned(self, opening: "asyncio.Future[StreamHandle]") -> None:
        if opening.cancelled() or opening.exception() is not None:
            return
        logger.info("Releasing camera whose open was cancelled.")
        opening.result().stop()

    def _set_torch(self, on: bool) -> bool:
        """
        Try to switch the torch; return whether it worked.

        Failures are expected on devices whose light cannot stay lit and are
        never propagated.
        """
        try:
            if on:
                self.illumination.enable()
            else:
                self.illumination.disable()
        except Exception as exc:                         # noqa: BLE001
            logger.debug("Torch %s failed, continuing without: %s",
                         "enable" if on else "disable", exc)
            return False
        logger.debug("Torch %s.", "on" if on else "off")
        return True

    def _open_device(self, constraints: CameraConstraints) -> StreamHandle:
        try:
            return self._connect(constraints)
        except CameraAccessError:
            raise
        except (RuntimeError, IndexError, OSError) as exc:
            logger.error("Cannot open camera: %s", exc)
            raise CameraAccessError() from exc

    def _connect(self, constraints: CameraConstraints) -> StreamHandle:
        if self._use_picamera2:
            return self._open_picamera2(constraints)
        return self._open_opencv(constraints)

    def _open_picamera2(self, constraints: CameraConstraints) -> StreamHandle:
        cam = Picamera2(constraints.camera_index)
        w, h = constraints.resolution
        transform = Transform(hflip=constraints.flip_horizontal)
        # RGB888 is the safest 3-channel format across all Pi camera models.
        config = cam.create_video_configuration(
            main={"size": (w, h), "format": "RGB888"},
            transform=transform,
            buffer_count=4,
        )
        cam.configure(config)
        frame_duration = int(1_000_000 / constraints.fps)   # microseconds
        try:
            cam.set_controls({
                "FrameDurationLimits": (frame_duration, frame_duration),
            })
        except Exception as exc:                         # noqa: BLE001
            logger.warning("Could not set FrameDurationLimits: %s", exc)
        cam.start()
        return StreamHandle(cam, "picamera2", constraints)

    def _open_opencv(self, constraints: CameraConstraints) -> StreamHandle:
        cap = cv2.VideoCapture(constraints.camera_index)
        if not cap.isOpened():
            cap.release()
            raise CameraAccessError(
                f"Could not access the camera (device index "
                f"{constraints.camera_index}). Check permissions."
            )
        w, h = constraints.resolution
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
        cap.set(cv2.CAP_PROP_FPS, constraints.fps)
        return StreamHandle(cap, "opencv", constraints)


class VideoSink:
    """
    Live video element a stream renders into.

    The presentation layer reads :meth:`current_frame` to show the preview;
    the session samples from the same frame.
    """

    def __init__(self, playback_timeout_ms: float = 5000.0, poll_interval: float = 0.01) -> None:
        self.playback_timeout_ms = playback_timeout_ms
        self.poll_interval = poll_interval
        self._handle: StreamHandle | None = None
        self._frame: np.ndarray | None = None
        # First-frame read running in a worker thread, if any.
        self._read: "asyncio.Future[np.ndarray | None] | None" = None

    def attach(self, handle: StreamHandle) -> None:
        self._handle = handle
        self._frame = None

    def detach(self) -> None:
        self._handle = None
        self._frame = None

    @property
    def attached(self) -> bool:
        return self._handle is not None

    @property
    def reading(self) -> bool:
        """True while a worker thread is inside the stream's ``read``."""
        return self._read is not None and not self._read.done()

    def after_read(self, callback: Callable[[], None]) -> None:
        """
        Run *callback* once no worker thread is reading the stream.

        Immediately when idle; otherwise on the event loop as soon as the
        in-flight read returns.  Use it to release a stream safely.
        """
        if self.reading:
            self._read.add_done_callback(lambda _: callback())
        else:
            callback()

    async def play(self) -> None:
        """
        Wait until the attached stream delivers its first frame.

        Returns early, without a frame, if the stream is detached meanwhile.

        Raises
        ------
        CameraAccessError
            If no frame arrives within ``playback_timeout_ms``.
        """
        if self._handle is None:
            raise RuntimeError("No stream attached.")
        started = time.monotonic()
        while self._handle is not None and self._frame is None:
            self._read = asyncio.ensure_future(asyncio.to_thread(self.grab))
            # Shielded so a cancelled play() never forgets a running read.
            await asyncio.shield(self._read)
            if self._frame is not None or self._handle is None:
                break
            if (time.monotonic() - started) * 1000.0 > self.playback_timeout_ms:
                raise CameraAccessError(
                    "The camera opened but delivered no video. Check permissions."
                )
            await asyncio.sleep(self.poll_interval)

    def grab(self) -> np.ndarray | None:
        """Advance to the newest frame of the stream; keep the old one on failure."""
        handle = self._handle
        if handle is None or handle.closed:
            return self._frame
        frame = handle.read_frame()
        # Detached while reading: the frame belongs to no one.
        if frame is not None and self._handle is handle:
            self._frame = frame
        return self._frame

    @property
    def has_enough_data(self) -> bool:
        return self._frame is not None

    @property
    def frame_size(self) -> Tuple[int, int]:
        """(width, height) of the current frame, (0, 0) before playback."""
        if self._frame is None:
            return 0, 0
        h, w = self._frame.shape[:2]
        return w, h

    def current_frame(self) -> np.ndarray | None:
        return self._frame
