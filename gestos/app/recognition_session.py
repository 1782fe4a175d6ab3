"""
Recognition Session for GestOS

Owns a gesture model adapter and runs the capture -> classify -> publish loop
bound to a camera stream and a render target.

State machine:
    UNINITIALIZED -> INITIALIZING -> READY | ERROR
    READY -> RECOGNIZING -> READY (stopped) -> RECOGNIZING -> ...
    RECOGNIZING -> ERROR (adapter failure)
    any -> UNINITIALIZED (force_cleanup)

Cancellation uses one lock and one generation token: every frame callback
carries the generation it was scheduled under, and stop_recognition() bumps
the generation while holding the lock that every tick runs under. When
stop_recognition() returns no tick is running and none will do work.
"""

import threading
import time
from enum import Enum
from typing import Callable, List, Optional

from gestos.vision.gesture_types import (
    AdapterError,
    GestureSignal,
    InitializationError,
)

INIT_ERROR_MESSAGE = "Error al cargar el reconocedor de gestos. Intenta de nuevo."
NOT_INITIALIZED_MESSAGE = "El reconocedor no está inicializado"
RECOGNITION_ERROR_MESSAGE = "El reconocimiento de gestos se detuvo por un error. Intenta de nuevo."


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    RECOGNIZING = "recognizing"
    ERROR = "error"


GestureListener = Callable[[Optional[GestureSignal]], None]


class RecognitionSession:
    """
    One gesture recognition session.

    Args:
        adapter: GestureModelAdapter (or anything with initialize/classify/close)
        scheduler: frame scheduler with request_frame(callback) / cancel_frame(handle)
        config: Config instance (optional)
        name: label used in console output
    """

    def __init__(self, adapter, scheduler, config=None, name: str = "session"):
        self.adapter = adapter
        self.scheduler = scheduler
        self.config = config
        self.name = name

        self._lock = threading.RLock()
        self._state = SessionState.UNINITIALIZED
        self._error: Optional[str] = None
        self._current_gesture: Optional[GestureSignal] = None
        self._listeners: List[GestureListener] = []

        self._generation = 0
        self._frame_handle = None
        self._video = None
        self._render_target = None
        self._last_video_time = -1.0
        self._last_timestamp_ms = 0

        self.frames_processed = 0

    # ------------------------------------------------------------------
    # Observables
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def current_gesture(self) -> Optional[GestureSignal]:
        return self._current_gesture

    @property
    def is_ready(self) -> bool:
        return self._state in (SessionState.READY, SessionState.RECOGNIZING)

    @property
    def is_recognizing(self) -> bool:
        return self._state is SessionState.RECOGNIZING

    def add_listener(self, listener: GestureListener):
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: GestureListener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> bool:
        """
        Load the model. Re-entrant calls while initializing, or once ready,
        return without side effects.

        Returns:
            True if the session is ready afterwards.
        """
        with self._lock:
            if self._state in (SessionState.INITIALIZING, SessionState.READY, SessionState.RECOGNIZING):
                return self.is_ready
            self._state = SessionState.INITIALIZING
            self._error = None
            generation = self._generation

        print(f"🔄 [{self.name}] Initializing gesture recognizer...")
        try:
            self.adapter.initialize()
        except InitializationError as e:
            print(f"❌ [{self.name}] Gesture recognizer failed to initialize: {e}")
            with self._lock:
                if generation == self._generation:
                    self._state = SessionState.ERROR
                    self._error = INIT_ERROR_MESSAGE
            return False

        with self._lock:
            # force_cleanup() may have run while the model was loading
            if generation != self._generation or self._state is not SessionState.INITIALIZING:
                return self.is_ready
            self._state = SessionState.READY
        print(f"✓ [{self.name}] Gesture recognizer initialized")
        return True

    def start_recognition(self, video, render_target) -> bool:
        """
        Start the capture loop on video (a CameraStream) drawing into render_target.

        Returns:
            False (with error set) when the session is not ready.
        """
        with self._lock:
            if self._state is SessionState.RECOGNIZING:
                print(f"⚠ [{self.name}] Recognition already running")
                return True
            if self._state is not SessionState.READY:
                self._error = NOT_INITIALIZED_MESSAGE
                return False

            self._generation += 1
            self._state = SessionState.RECOGNIZING
            self._error = None
            self._video = video
            self._render_target = render_target
            self._last_video_time = -1.0
            self._schedule_next(self._generation)
        print(f"▶ [{self.name}] Gesture recognition started")
        return True

    def stop_recognition(self):
        """
        Stop the capture loop.

        Cancels the pending frame callback, waits for an in-flight frame to
        finish, clears the published gesture. Safe to call when not running.
        """
        self._cancel_pending()
        with self._lock:
            was_recognizing = self._state is SessionState.RECOGNIZING
            self._generation += 1
            # A tick that finished while we waited for the lock may have rescheduled
            self._cancel_pending()
            if was_recognizing:
                self._state = SessionState.READY
            self._video = None
            self._render_target = None
            self._last_video_time = -1.0
            self._publish(None)
        if was_recognizing:
            print(f"🛑 [{self.name}] Gesture recognition stopped")

    def force_cleanup(self):
        """Stop, close the model and return to UNINITIALIZED, clearing any error."""
        print(f"🧹 [{self.name}] Forcing full recognizer cleanup")
        self.stop_recognition()
        try:
            self.adapter.close()
        except Exception as e:
            print(f"⚠ [{self.name}] Error closing recognizer: {e}")
        with self._lock:
            self._generation += 1
            self._state = SessionState.UNINITIALIZED
            self._error = None

    close = force_cleanup

    # ------------------------------------------------------------------
    # Capture loop
    # ------------------------------------------------------------------

    def _schedule_next(self, generation: int):
        if generation != self._generation or self._state is not SessionState.RECOGNIZING:
            return
        self._frame_handle = self.scheduler.request_frame(lambda: self._process_frame(generation))

    def _cancel_pending(self):
        handle = self._frame_handle
        if handle is not None:
            self._frame_handle = None
            self.scheduler.cancel_frame(handle)

    def _process_frame(self, generation: int):
        with self._lock:
            if generation != self._generation or self._state is not SessionState.RECOGNIZING:
                return
            self._frame_handle = None
            video = self._video
            target = self._render_target

            width, height = video.video_width, video.video_height
            if not width or not height or width <= 0 or height <= 0:
                # Video not decoded yet, poll again next tick
                self._schedule_next(generation)
                return

            video_time = video.current_time
            if video_time != self._last_video_time:
                self._last_video_time = video_time
                try:
                    self._handle_frame(video, target, width, height)
                except AdapterError as e:
                    self._fail(e)
                    return
                except Exception as e:  # drawing or publishing must not kill the loop
                    print(f"⚠ [{self.name}] Error processing frame: {e}")

            self._schedule_next(generation)

    def _handle_frame(self, video, target, width: int, height: int):
        frame = video.latest_frame()
        if frame is None:
            return

        if target is not None and (target.width != width or target.height != height):
            target.resize(width, height)

        detection = self.adapter.classify(frame, self._next_timestamp_ms())
        self.frames_processed += 1

        if target is not None:
            target.clear()
            for hand_landmarks in detection.landmarks:
                target.draw_landmarks(hand_landmarks)

        if detection.hands:
            self._publish(GestureSignal.from_detection(detection.hands[0]))
        else:
            self._publish(None)

    def _next_timestamp_ms(self) -> int:
        # VIDEO running mode requires strictly increasing timestamps
        now_ms = int(time.monotonic() * 1000)
        if now_ms <= self._last_timestamp_ms:
            now_ms = self._last_timestamp_ms + 1
        self._last_timestamp_ms = now_ms
        return now_ms

    def _fail(self, error: Exception):
        print(f"❌ [{self.name}] Recognition failed: {error}")
        self._generation += 1
        self._cancel_pending()
        self._state = SessionState.ERROR
        self._error = RECOGNITION_ERROR_MESSAGE
        self._video = None
        self._render_target = None
        self._publish(None)

    def _publish(self, signal: Optional[GestureSignal]):
        self._current_gesture = signal
        for listener in list(self._listeners):
            try:
                listener(signal)
            except Exception as e:
                print(f"⚠ [{self.name}] Gesture listener failed: {e}")
