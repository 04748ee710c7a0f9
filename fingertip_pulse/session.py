"""
Detection session controller.

Drives one measurement from camera acquisition to a final heart rate::

    IDLE ──START──▶ ACQUIRING ──STREAM_READY──▶ DETECTING ──TIMEOUT──▶ STOPPED
                        │                            │
                        └──ACQUISITION_FAILED──▶ STOPPED ◀──STOP──┘

Every timer and frame callback feeds exactly one :class:`SessionEvent`
into :meth:`PulseDetector.transition`; nothing else mutates the session.
The session owns the camera stream and the three scheduled handles
(progress timer, timeout, frame loop), and teardown releases all of them
whatever state they are in.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from fingertip_pulse.camera import Camera, StreamHandle, VideoSink
from fingertip_pulse.config import CameraConstraints, DetectionConfig
from fingertip_pulse.errors import (
    CameraAccessError,
    ImplausibleResultError,
    InsufficientDataError,
    PulseDetectionError,
)
from fingertip_pulse.region_sampler import Accepted, FrameCanvas, RegionSampler
from fingertip_pulse.scheduler import AsyncioScheduler, Cancellable, Scheduler
from fingertip_pulse.signal_processor import SignalBuffer, display_bpm, is_plausible

logger = logging.getLogger(__name__)


class SessionStatus(enum.Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    DETECTING = "detecting"
    STOPPED = "stopped"


class SessionEvent(enum.Enum):
    START = "start"
    STREAM_READY = "stream_ready"
    ACQUISITION_FAILED = "acquisition_failed"
    PROGRESS_TICK = "progress_tick"
    FRAME = "frame"
    TIMEOUT = "timeout"
    STOP = "stop"


@dataclass
class DetectionSession:
    """State of one measurement attempt."""

    buffer: SignalBuffer
    status: SessionStatus = SessionStatus.IDLE
    start_time_ms: int = 0
    current_bpm: int = 0
    final_bpm: Optional[int] = None
    progress: float = 0.0
    last_error: Optional[PulseDetectionError] = None

    stream: Optional[StreamHandle] = field(default=None, repr=False)
    progress_timer: Optional[Cancellable] = field(default=None, repr=False)
    timeout_timer: Optional[Cancellable] = field(default=None, repr=False)
    # Settle delay first, then the self-rescheduling frame callback.
    frame_handle: Optional[Cancellable] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self.status in (SessionStatus.ACQUIRING, SessionStatus.DETECTING)


class PulseDetector:
    """
    Heart-rate measurement controller.

    Parameters
    ----------
    duration_seconds:
        Measurement length; overrides ``config.duration_seconds``.
    config:
        Engine tunables.
    camera:
        Camera provider; an OpenCV / picamera2 :class:`Camera` by default.
    scheduler:
        Timer and frame scheduler; an :class:`AsyncioScheduler` by default.
    constraints:
        What to request from the camera.
    """

    def __init__(
        self,
        duration_seconds: float | None = None,
        *,
        config: DetectionConfig | None = None,
        camera: Camera | None = None,
        scheduler: Scheduler | None = None,
        constraints: CameraConstraints | None = None,
    ) -> None:
        config = config or DetectionConfig()
        if duration_seconds is not None:
            config = dataclasses.replace(config, duration_seconds=duration_seconds)
        self.config = config.validate()

        self.camera = camera or Camera()
        self.scheduler = scheduler or AsyncioScheduler(frame_rate=config.frame_rate)
        self.constraints = constraints or CameraConstraints()

        # Bound by the presentation layer.
        self.video = VideoSink(playback_timeout_ms=config.playback_timeout_ms)
        self.canvas = FrameCanvas()

        self.sampler = RegionSampler(
            clock=self.scheduler.now_ms,
            roi_fraction=config.roi_fraction,
            brightness_low=config.brightness_low,
            brightness_high=config.brightness_high,
            canvas=self.canvas,
        )

        self._session = self._new_session()
        self._listeners: List[Callable[["PulseDetector"], None]] = []

        self._handlers = {
            SessionEvent.START: self._on_start,
            SessionEvent.STREAM_READY: self._on_stream_ready,
            SessionEvent.ACQUISITION_FAILED: self._on_acquisition_failed,
            SessionEvent.PROGRESS_TICK: self._on_progress_tick,
            SessionEvent.FRAME: self._on_frame,
            SessionEvent.TIMEOUT: self._on_timeout,
            SessionEvent.STOP: self._on_stop,
        }

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    @property
    def session(self) -> DetectionSession:
        return self._session

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    @property
    def current_bpm(self) -> int:
        return self._session.current_bpm

    @property
    def final_bpm(self) -> int | None:
        return self._session.final_bpm

    @property
    def is_detecting(self) -> bool:
        return self._session.status is SessionStatus.DETECTING

    @property
    def progress(self) -> float:
        return self._session.progress

    @property
    def last_error(self) -> PulseDetectionError | None:
        return self._session.last_error

    @property
    def error(self) -> str | None:
        err = self._session.last_error
        return err.message if err is not None else None

    @property
    def buffer(self) -> SignalBuffer:
        return self._session.buffer

    def subscribe(self, callback: Callable[["PulseDetector"], None]) -> None:
        """Call *callback* with this detector after every state change."""
        self._listeners.append(callback)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start_detection(self) -> None:
        """
        Start a measurement.

        Returns once the session is detecting or has failed to acquire the
        camera; the outcome is reported through :attr:`error`, never raised.
        A call while a session is already acquiring or detecting is ignored.
        """
        if self._session.active:
            logger.warning(
                "Detection already %s – start request ignored.",
                self._session.status.value,
            )
            return

        session = self.transition(SessionEvent.START)
        try:
            await self._acquire(session)
        except asyncio.CancelledError:
            self.transition(SessionEvent.STOP, session)
            raise

    async def _acquire(self, session: DetectionSession) -> None:
        try:
            stream = await self.camera.open(self.constraints)
        except PermissionError as exc:
            self._fail_acquisition(session, exc)
            return

        if session is not self._session or session.status is not SessionStatus.ACQUIRING:
            # Stopped while the camera was opening.
            self.camera.close(stream)
            return

        session.stream = stream
        self.video.attach(stream)
        try:
            await self.video.play()
        except PermissionError as exc:
            if session is self._session and session.status is SessionStatus.ACQUIRING:
                self._fail_acquisition(session, exc)
            return

        if session is self._session and session.status is SessionStatus.ACQUIRING:
            self.transition(SessionEvent.STREAM_READY, session)

    def stop_detection(self) -> None:
        """Stop now, without a final result.  Safe to call at any time."""
        self.transition(SessionEvent.STOP)

    def close(self) -> None:
        """Release everything and return to idle (e.g. when the UI goes away)."""
        self.transition(SessionEvent.STOP)
        self._session = self._new_session()

    async def __aenter__(self) -> "PulseDetector":
        return self

    async def __aexit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def transition(
        self, event: SessionEvent, session: DetectionSession | None = None, **payload
    ) -> DetectionSession:
        """
        Feed *event* into the state machine.

        *session* is the session the event was scheduled for; events that
        belong to an earlier session are dropped.
        """
        if session is not None and session is not self._session:
            logger.debug("Dropping %s for a finished session.", event.value)
            return session

        session = self._handlers[event](self._session, **payload)
        for listener in self._listeners:
            listener(self)
        return session

    def _on_start(self, session: DetectionSession) -> DetectionSession:
        self._session = session = self._new_session()
        session.status = SessionStatus.ACQUIRING
        logger.info("Acquiring camera for a %.0f s measurement.", self.config.duration_seconds)
        return session

    def _on_acquisition_failed(
        self, session: DetectionSession, error: PulseDetectionError
    ) -> DetectionSession:
        session.last_error = error
        self._teardown(session)
        session.status = SessionStatus.STOPPED
        logger.error("Camera acquisition failed: %s", error)
        return session

    def _on_stream_ready(self, session: DetectionSession) -> DetectionSession:
        if session.status is not SessionStatus.ACQUIRING:
            return session
        cfg = self.config
        session.status = SessionStatus.DETECTING
        session.start_time_ms = self.scheduler.now_ms()

        session.progress_timer = self.scheduler.call_every(
            cfg.progress_interval_ms,
            lambda: self.transition(SessionEvent.PROGRESS_TICK, session),
        )
        session.timeout_timer = self.scheduler.call_later(
            cfg.duration_ms,
            lambda: self.transition(SessionEvent.TIMEOUT, session),
        )
        session.frame_handle = self.scheduler.call_later(
            cfg.settle_delay_ms,
            lambda: self.transition(SessionEvent.FRAME, session),
        )
        logger.info("Detection started.")
        return session

    def _on_progress_tick(self, session: DetectionSession) -> DetectionSession:
        if session.status is not SessionStatus.DETECTING:
            return session
        elapsed = self.scheduler.now_ms() - session.start_time_ms
        session.progress = min(elapsed / self.config.duration_ms * 100.0, 100.0)
        return session

    def _on_frame(self, session: DetectionSession) -> DetectionSession:
        if session.status is not SessionStatus.DETECTING:
            return session
        session.frame_handle = None

        try:
            self.video.grab()
        except Exception as exc:                         # noqa: BLE001
            logger.warning("Frame read failed, skipping frame: %s", exc)
        else:
            self._sample_frame(session)

        session.frame_handle = self.scheduler.request_frame(
            lambda: self.transition(SessionEvent.FRAME, session)
        )
        return session

    def _sample_frame(self, session: DetectionSession) -> None:
        outcome = self.sampler.sample(self.video)
        if not isinstance(outcome, Accepted):
            logger.debug("Frame skipped: %s", outcome.reason.value)
            return

        sample = outcome.sample
        session.buffer.append(sample)
        if (
            len(session.buffer) >= self.config.min_samples
            and sample.timestamp_ms - session.start_time_ms >= self.config.warmup_ms
        ):
            bpm = session.buffer.estimate()
            if is_plausible(bpm, self.config.bpm_low, self.config.bpm_high):
                session.current_bpm = display_bpm(bpm)

    def _on_timeout(self, session: DetectionSession) -> DetectionSession:
        if session.status is not SessionStatus.DETECTING:
            return session
        session.timeout_timer = None

        enough = len(session.buffer) >= self.config.min_samples
        final = session.buffer.estimate() if enough else 0.0

        self._teardown(session)
        session.status = SessionStatus.STOPPED
        session.progress = 100.0

        if is_plausible(final, self.config.bpm_low, self.config.bpm_high):
            session.final_bpm = display_bpm(final)
            logger.info("Measurement finished: %d BPM (%d samples).",
                        session.final_bpm, len(session.buffer))
        elif final == 0.0:
            session.last_error = InsufficientDataError()
            logger.warning("Measurement finished without a pulse (%d samples).",
                           len(session.buffer))
        else:
            session.last_error = ImplausibleResultError(final)
            logger.warning("Measurement finished with implausible %.1f BPM.", final)
        return session

    def _on_stop(self, session: DetectionSession) -> DetectionSession:
        self._teardown(session)
        if session.active:
            session.status = SessionStatus.STOPPED
            logger.info("Detection stopped.")
        return session

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _new_session(self) -> DetectionSession:
        return DetectionSession(
            buffer=SignalBuffer(
                max_samples=self.config.max_samples,
                min_samples=self.config.min_samples,
                min_peak_distance_ms=self.config.min_peak_distance_ms,
            )
        )

    def _fail_acquisition(self, session: DetectionSession, exc: PermissionError) -> None:
        error = exc if isinstance(exc, CameraAccessError) else CameraAccessError()
        if error is not exc:
            error.__cause__ = exc
        self.transition(SessionEvent.ACQUISITION_FAILED, session, error=error)

    def _teardown(self, session: DetectionSession) -> None:
        """Cancel every scheduled handle and release the camera.  Idempotent."""
        for name in ("frame_handle", "progress_timer", "timeout_timer"):
            handle = getattr(session, name)
            if handle is not None:
                handle.cancel()
                setattr(session, name, None)

        stream, session.stream = session.stream, None
        if stream is not None:
            self.video.detach()
            # A first-frame read may still be running in a worker thread.
            self.video.after_read(lambda: self.camera.close(stream))
