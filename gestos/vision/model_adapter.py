"""
Vision Model Adapter for GestOS

Wraps the MediaPipe Tasks GestureRecognizer behind three calls:
initialize() / classify(frame, timestamp_ms) / close().

The model is loaded from a primary remote source (downloaded once into a
cache directory) and falls back to a local .task file. Loading is bounded by
a timeout. Per-frame recognizer errors never escape classify().
"""

import concurrent.futures
import threading
import urllib.request
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Tuple

import cv2

from gestos.vision.gesture_types import (
    AdapterError,
    DetectionFrame,
    GestureLabel,
    HandDetection,
    InitializationError,
    InitializationTimeout,
    TransientFrameError,
)


class AdapterState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class MediaPipeModelLoader:
    """Creates MediaPipe GestureRecognizer handles from the configured sources."""

    def __init__(self, config):
        self.config = config

    def load_remote(self):
        """Download (or reuse the cached copy of) the primary model and load it."""
        return self._create(self._ensure_model_downloaded())

    def load_local(self):
        """Load the fallback model shipped next to the application."""
        local_path = Path(self.config.get('model', 'local_path', default='models/gesture_recognizer.task'))
        if not local_path.exists():
            raise FileNotFoundError(f"Local model not found: {local_path}")
        return self._create(local_path)

    def recognize(self, recognizer, frame_bgr, timestamp_ms: int):
        import mediapipe as mp

        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=frame_rgb)
        return recognizer.recognize_for_video(mp_image, int(timestamp_ms))

    def _ensure_model_downloaded(self) -> Path:
        url = self.config.get('model', 'remote_url')
        cache_dir = Path(self.config.get('model', 'cache_dir', default='~/.cache/gestos')).expanduser()
        model_path = cache_dir / Path(url).name
        if model_path.exists():
            return model_path

        cache_dir.mkdir(parents=True, exist_ok=True)
        timeout = self.config.get('model', 'download_timeout', default=15.0)
        print("📥 Downloading gesture recognizer model...")
        tmp_path = model_path.with_suffix('.part')
        with urllib.request.urlopen(url, timeout=timeout) as response, open(tmp_path, 'wb') as f:
            f.write(response.read())
        tmp_path.replace(model_path)
        print(f"✓ Model downloaded to {model_path}")
        return model_path

    def _create(self, model_path: Path):
        # MediaPipe is heavy to import; only pay for it when a model is loaded
        from mediapipe.tasks.python import vision as mp_vision
        from mediapipe.tasks.python.core.base_options import BaseOptions

        delegate_name = str(self.config.get('model', 'delegate', default='CPU')).upper()
        delegate = BaseOptions.Delegate.GPU if delegate_name == 'GPU' else BaseOptions.Delegate.CPU
        options = mp_vision.GestureRecognizerOptions(
            base_options=BaseOptions(model_asset_path=str(model_path), delegate=delegate),
            running_mode=mp_vision.RunningMode.VIDEO,
            num_hands=self.config.get('model', 'num_hands', default=1),
            min_hand_detection_confidence=self.config.get('model', 'min_hand_detection_confidence', default=0.5),
            min_tracking_confidence=self.config.get('model', 'min_tracking_confidence', default=0.5),
        )
        return mp_vision.GestureRecognizer.create_from_options(options)


def detection_from_result(result) -> DetectionFrame:
    """
    Convert a GestureRecognizerResult into a DetectionFrame.

    Only the first hand's first-ranked gesture is kept. Landmarks of every
    returned hand are kept for drawing.
    """
    landmarks: List[List[Tuple[float, float, float]]] = []
    for hand_landmarks in getattr(result, 'hand_landmarks', None) or []:
        landmarks.append([(lm.x, lm.y, getattr(lm, 'z', 0.0)) for lm in hand_landmarks])

    gestures = getattr(result, 'gestures', None) or []
    handedness = getattr(result, 'handedness', None) or []
    hands: List[HandDetection] = []
    if gestures and gestures[0] and handedness and handedness[0]:
        top = gestures[0][0]
        side = handedness[0][0]
        hands.append(HandDetection(
            label=GestureLabel.from_category(top.category_name),
            confidence=float(top.score),
            handedness=side.display_name or side.category_name,
        ))
    return DetectionFrame(hands=hands, landmarks=landmarks)


class GestureModelAdapter:
    """
    Owns one gesture recognizer handle.

    initialize() is idempotent: concurrent or repeated calls while the model is
    loading or loaded return immediately without touching the model sources.
    """

    def __init__(self, config, loader=None):
        self.config = config
        self._loader = loader or MediaPipeModelLoader(config)
        self._lock = threading.Lock()
        self._state = AdapterState.UNINITIALIZED
        self._recognizer: Optional[Any] = None
        self._generation = 0
        self.model_source: Optional[str] = None

        self._benign_patterns = self.config.get_list('model', 'benign_error_patterns')
        self._reported_errors = set()
        self.transient_error_count = 0
        self.last_frame_error: Optional[TransientFrameError] = None

    @property
    def state(self) -> AdapterState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is AdapterState.READY

    def initialize(self):
        """
        Load the model (primary source, then local fallback).

        Raises:
            InitializationTimeout: loading exceeded model.init_timeout
            InitializationError: both sources failed
        """
        with self._lock:
            if self._state in (AdapterState.READY, AdapterState.INITIALIZING):
                return
            self._state = AdapterState.INITIALIZING
            generation = self._generation

        timeout = self.config.get('model', 'init_timeout', default=30.0)
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix='gestos-model-load')
        future = executor.submit(self._load_from_sources)
        try:
            recognizer, source = future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.add_done_callback(self._discard_late_load)
            self._reset_after_failure(generation)
            print(f"❌ Gesture model initialization timed out after {timeout:.0f}s")
            raise InitializationTimeout(f"Timed out after {timeout:.0f}s while loading the gesture model")
        except InitializationError:
            self._reset_after_failure(generation)
            raise
        finally:
            executor.shutdown(wait=False)

        with self._lock:
            if generation != self._generation:
                # close() ran while we were loading
                stale = recognizer
            else:
                stale = None
                self._recognizer = recognizer
                self.model_source = source
                self._state = AdapterState.READY
        if stale is not None:
            self._close_handle(stale)
            return
        print(f"✓ Gesture recognizer ready ({source} model)")

    def classify(self, frame_bgr, timestamp_ms: int) -> DetectionFrame:
        """
        Classify one frame.

        Per-frame recognizer failures return an empty DetectionFrame.

        Raises:
            AdapterError: the adapter is not initialized (or was closed)
        """
        recognizer = self._recognizer
        if self._state is not AdapterState.READY or recognizer is None:
            raise AdapterError("Gesture recognizer is not initialized")

        try:
            result = self._loader.recognize(recognizer, frame_bgr, timestamp_ms)
        except Exception as e:  # per-frame failures must not stop the loop
            self._handle_frame_error(TransientFrameError(str(e)))
            return DetectionFrame()
        return detection_from_result(result)

    def close(self):
        """Release the recognizer. Safe to call multiple times."""
        with self._lock:
            recognizer = self._recognizer
            self._recognizer = None
            self._generation += 1
            self._state = AdapterState.UNINITIALIZED
            self.model_source = None
        if recognizer is not None:
            self._close_handle(recognizer)
            print("🛑 Gesture recognizer closed")

    def is_benign(self, message: str) -> bool:
        return any(pattern in message for pattern in self._benign_patterns)

    def _load_from_sources(self):
        sources = (
            ('remote', self._loader.load_remote),
            ('local', self._loader.load_local),
        )
        failures = []
        for name, load in sources:
            print(f"🔄 Loading gesture model ({name})...")
            try:
                return load(), name
            except Exception as e:  # try the next source
                print(f"⚠ Could not load {name} model: {e}")
                failures.append(f"{name}: {e}")
        raise InitializationError("Could not load the gesture model (" + "; ".join(failures) + ")")

    def _handle_frame_error(self, error: TransientFrameError):
        message = str(error)
        if self.is_benign(message):
            return
        self.transient_error_count += 1
        self.last_frame_error = error
        if message not in self._reported_errors and len(self._reported_errors) < 50:
            self._reported_errors.add(message)
            print(f"⚠ Error processing frame: {message}")

    def _reset_after_failure(self, generation: int):
        with self._lock:
            if generation == self._generation:
                self._state = AdapterState.UNINITIALIZED

    def _discard_late_load(self, future):
        if future.cancelled() or future.exception() is not None:
            return
        recognizer, _ = future.result()
        with self._lock:
            owned = recognizer is self._recognizer
        if not owned:
            self._close_handle(recognizer)

    @staticmethod
    def _close_handle(recognizer):
        try:
            recognizer.close()
        except Exception as e:
            print(f"⚠ Error closing gesture recognizer: {e}")
