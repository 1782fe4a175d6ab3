"""
Camera Acquisition for GestOS

Opens the capture device with a resolution tier, keeps the most recent frame
available to the recognition loop, and releases the device on request.
"""

import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

import cv2

from gestos.vision.gesture_types import CameraAccessError

CAMERA_ERROR_MESSAGE = "No se pudo acceder a la cámara. Verifica los permisos."

DEFAULT_RESOLUTION_TIERS = {
    '480p': (640, 480),
    '720p': (1280, 720),
    '1080p': (1920, 1080),
}


class CameraStream:
    """
    A live capture stream.

    A reader thread pulls frames from the device and keeps only the newest
    one, together with its presentation timestamp (ms). video_width and
    video_height stay 0 until the first frame has been decoded.
    """

    def __init__(self, capture, device_index: int, constraints: Dict,
                 flip_horizontal: bool = True, read_retry_delay: float = 0.01):
        self._capture = capture
        self.device_index = device_index
        self.constraints = dict(constraints)
        self.flip_horizontal = flip_horizontal
        self.read_retry_delay = read_retry_delay

        self._lock = threading.Lock()
        self._frame = None
        self._current_time = -1.0
        self._width = 0
        self._height = 0
        self._stop_event = threading.Event()
        self._reader = threading.Thread(target=self._read_loop, name=f"gestos-camera-{device_index}", daemon=True)

        self.frames_read = 0
        self.read_failures = 0

    def start(self):
        self._reader.start()

    @property
    def active(self) -> bool:
        return not self._stop_event.is_set()

    @property
    def current_time(self) -> float:
        """Presentation timestamp (ms) of the latest frame, -1 before the first one."""
        with self._lock:
            return self._current_time

    @property
    def video_width(self) -> int:
        with self._lock:
            return self._width

    @property
    def video_height(self) -> int:
        with self._lock:
            return self._height

    def latest_frame(self):
        """Newest decoded frame (BGR). Frames are replaced, never modified in place."""
        with self._lock:
            return self._frame

    def wait_for_dimensions(self, timeout: float, poll_interval: float = 0.1,
                            cancelled: Optional[threading.Event] = None) -> bool:
        """Poll until the first frame gives valid dimensions. Returns False on timeout, stop or cancel."""
        deadline = time.monotonic() + timeout
        while self.active:
            if self.video_width > 0 and self.video_height > 0:
                return True
            if cancelled is not None and cancelled.is_set():
                return False
            if time.monotonic() >= deadline:
                return False
            time.sleep(poll_interval)
        return False

    def stop(self):
        """Stop the reader and release the device."""
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        if self._reader.is_alive() and self._reader is not threading.current_thread():
            self._reader.join(timeout=1.0)
        try:
            self._capture.release()
        except Exception as e:
            print(f"⚠ Error releasing camera: {e}")
        with self._lock:
            self._frame = None
            self._width = 0
            self._height = 0
            self._current_time = -1.0
        print(f"🛑 Camera {self.device_index} track stopped")

    def _read_loop(self):
        while not self._stop_event.is_set():
            ok, frame = self._capture.read()
            if not ok or frame is None:
                self.read_failures += 1
                time.sleep(self.read_retry_delay)
                continue

            if self.flip_horizontal:
                frame = cv2.flip(frame, 1)
            h, w = frame.shape[:2]
            with self._lock:
                self._frame = frame
                self._width = w
                self._height = h
                self._current_time = time.monotonic() * 1000.0
            self.frames_read += 1


class CameraAcquisition:
    """
    Negotiates the camera for one consumer.

    At most one stream is held at a time: acquire() releases a stream that is
    still open before opening a new one.
    """

    def __init__(self, config, capture_factory: Optional[Callable] = None, device_index: Optional[int] = None):
        self.config = config
        self._capture_factory = capture_factory or cv2.VideoCapture
        self.device_index = device_index if device_index is not None else config.get('camera', 'index', default=0)
        self._stream: Optional[CameraStream] = None
        self._lock = threading.RLock()

    @property
    def stream(self) -> Optional[CameraStream]:
        return self._stream

    @property
    def is_streaming(self) -> bool:
        return self._stream is not None and self._stream.active

    def resolution_for(self, tier: Optional[str] = None) -> Tuple[int, int]:
        tier = tier or self.config.get('camera', 'resolution', default='720p')
        size = self.config.get('camera', 'resolution_tiers', tier, default=None) or DEFAULT_RESOLUTION_TIERS.get(tier)
        if size is None:
            raise ValueError(f"Unknown resolution tier: {tier}")
        return int(size[0]), int(size[1])

    def constraints_for(self, tier: Optional[str] = None) -> Dict:
        width, height = self.resolution_for(tier)
        return {
            'width': width,
            'height': height,
            'facingMode': self.config.get('camera', 'facing_mode', default='user'),
        }

    def acquire(self, tier: Optional[str] = None) -> CameraStream:
        """
        Open the camera with the requested resolution tier.

        Raises:
            CameraAccessError: permission denied or device unavailable
        """
        with self._lock:
            if self._stream is not None:
                print("⚠ Camera still held, releasing previous stream first")
                self._release_locked()

            constraints = self.constraints_for(tier)
            try:
                cap = self._capture_factory(self.device_index)
            except Exception as e:
                print(f"❌ Error accessing camera {self.device_index}: {e}")
                raise CameraAccessError(CAMERA_ERROR_MESSAGE) from e

            if cap is None or not cap.isOpened():
                if cap is not None:
                    try:
                        cap.release()
                    except Exception:
                        pass
                print(f"❌ Could not open camera {self.device_index}")
                raise CameraAccessError(CAMERA_ERROR_MESSAGE)

            cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints['width'])
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints['height'])
            actual_width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
            actual_height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
            print(f"✓ Camera {self.device_index} opened: {actual_width}x{actual_height} "
                  f"(requested {constraints['width']}x{constraints['height']})")

            stream = CameraStream(
                cap,
                self.device_index,
                constraints,
                flip_horizontal=self.config.get('camera', 'flip_horizontal', default=True),
                read_retry_delay=self.config.get('camera', 'read_retry_delay', default=0.01),
            )
            stream.start()
            self._stream = stream
            return stream

    def release(self):
        """Stop every track of the current stream. No-op when nothing is held."""
        with self._lock:
            self._release_locked()

    def restart(self, tier: Optional[str] = None) -> CameraStream:
        """Release, wait for the device to settle, then acquire again."""
        self.release()
        # Some capture backends keep the device busy for a moment after release
        time.sleep(self.config.get('camera', 'settle_delay', default=0.5))
        return self.acquire(tier)

    def enumerate_devices(self) -> List[int]:
        """Indices of capture devices that can be opened."""
        limit = self.config.get('camera', 'probe_limit', default=4)
        found = []
        for idx in range(limit):
            if self.is_streaming and idx == self.device_index:
                found.append(idx)
                continue
            try:
                cap = self._capture_factory(idx)
            except Exception:
                continue
            if cap is not None and cap.isOpened():
                found.append(idx)
            if cap is not None:
                try:
                    cap.release()
                except Exception:
                    pass
        return found

    def _release_locked(self):
        stream = self._stream
        self._stream = None
        if stream is not None:
            stream.stop()
