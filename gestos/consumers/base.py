"""
Gesture Consumer base for GestOS

A consumer is one UI mode that drives its own recognition session: the plain
overlay or one of the games. Every consumer shares the same activation
protocol:

    activate:   initialize session -> acquire camera -> wait for video
                dimensions -> start recognition -> subscribe
    deactivate: unsubscribe -> stop recognition -> release camera

Recognition is always stopped before the camera is released.
"""

import threading
from typing import Callable, Optional

from gestos.utils.camera import CAMERA_ERROR_MESSAGE
from gestos.utils.visual_feedback import FrameCanvas
from gestos.vision.gesture_types import CameraAccessError, GestureSignal


class GestureConsumer:
    """
    Shared activation protocol for every gesture consumer.

    Args:
        name: consumer id ("overlay", "rock_paper_scissors", "simon_says")
        session: RecognitionSession owned by this consumer
        camera: CameraAcquisition owned by this consumer
        config: Config instance
        canvas: render target (a FrameCanvas is created when omitted)
    """

    def __init__(self, name: str, session, camera, config, canvas=None):
        self.name = name
        self.session = session
        self.camera = camera
        self.config = config
        self.canvas = canvas or FrameCanvas(config)

        self._error: Optional[str] = None
        self._active = False
        self._lifecycle_lock = threading.RLock()
        self._cancel_event = threading.Event()

    # ------------------------------------------------------------------
    # Observables
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_streaming(self) -> bool:
        return self.camera.is_streaming

    @property
    def error(self) -> Optional[str]:
        """Latest user-facing error (camera or model), None when healthy."""
        return self._error or self.session.error

    @property
    def current_gesture(self) -> Optional[GestureSignal]:
        return self.session.current_gesture

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def activate(self, cancelled: Optional[threading.Event] = None) -> bool:
        """
        Run the activation sequence.

        Args:
            cancelled: event set by the consumer manager when this activation
                       overruns its budget

        Returns:
            True when recognition is running.
        """
        return self._activate(self.camera.acquire, cancelled)

    def restart(self, cancelled: Optional[threading.Event] = None) -> bool:
        """Re-run the whole sequence from scratch (the retry action)."""
        print(f"🔄 [{self.name}] Restarting...")
        self.deactivate()
        if self.session.error:
            self.session.force_cleanup()
        return self._activate(self.camera.restart, cancelled)

    retry = restart

    def deactivate(self):
        """Stop recognition, then release the camera. Safe when inactive."""
        with self._lifecycle_lock:
            self.session.remove_listener(self._dispatch_gesture)
            self.session.stop_recognition()
            self.camera.release()
            was_active = self._active
            self._active = False
        if was_active:
            self.on_deactivated()
            print(f"🛑 [{self.name}] Deactivated")

    def cancel_activation(self):
        self._cancel_event.set()

    def shutdown(self):
        """Deactivate and release the model."""
        self.deactivate()
        self.session.force_cleanup()

    def tick(self, now: Optional[float] = None):
        """Advance timer-driven state. The overlay has none."""

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def on_gesture(self, signal: Optional[GestureSignal]):
        """Called for every published signal (None when no hand is seen)."""

    def on_activated(self):
        """Called once recognition is running."""

    def on_deactivated(self):
        """Called after recognition stopped and the camera was released."""

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _activate(self, open_camera: Callable, cancelled: Optional[threading.Event]) -> bool:
        with self._lifecycle_lock:
            self._cancel_event = cancelled or threading.Event()
            self._error = None

            if not self.session.initialize():
                print(f"❌ [{self.name}] Recognizer not available: {self.session.error}")
                return False
            if self._cancelled():
                return False

            try:
                stream = open_camera(self.config.get('camera', 'resolution', default='720p'))
            except CameraAccessError as e:
                self._error = str(e) or CAMERA_ERROR_MESSAGE
                return False

            ready = stream.wait_for_dimensions(
                timeout=self.config.get('camera', 'dimension_wait_timeout', default=5.0),
                poll_interval=self.config.get('camera', 'dimension_poll_interval', default=0.1),
                cancelled=self._cancel_event,
            )
            if self._cancelled():
                self.camera.release()
                return False
            if not ready:
                print(f"❌ [{self.name}] Camera produced no frames")
                self.camera.release()
                self._error = CAMERA_ERROR_MESSAGE
                return False

            self.session.add_listener(self._dispatch_gesture)
            if not self.session.start_recognition(stream, self.canvas):
                self.session.remove_listener(self._dispatch_gesture)
                self.camera.release()
                return False

            self._active = True
        self.on_activated()
        print(f"✓ [{self.name}] Active")
        return True

    def _cancelled(self) -> bool:
        if self._cancel_event.is_set():
            print(f"⚠ [{self.name}] Activation cancelled")
            return True
        return False

    def _dispatch_gesture(self, signal: Optional[GestureSignal]):
        self.on_gesture(signal)
