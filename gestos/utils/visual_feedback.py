"""
Visual Feedback Overlay for GestOS

FrameCanvas is the render target of the recognition loop: the loop resizes it
to the video, clears it every processed frame and draws the detected hand
skeleton into it. The GUI blends the overlay onto the camera frame.
"""

import threading
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from gestos.vision.gesture_types import HAND_CONNECTIONS


@dataclass
class UIColors:
    """Overlay palette (BGR)."""
    connector = (0, 255, 0)      # Green
    landmark = (0, 0, 255)       # Red
    text_primary = (255, 255, 255)
    background = (20, 20, 30)


class FrameCanvas:
    """
    Overlay buffer the size of the video frame.
    """

    def __init__(self, config=None):
        self.colors = UIColors()
        self._lock = threading.Lock()
        self._image: Optional[np.ndarray] = None
        self.width = 0
        self.height = 0

        if config:
            self.enabled = config.get('visual_feedback', 'show_landmarks', default=True)
            self.colors.connector = tuple(config.get('visual_feedback', 'connector_color', default=self.colors.connector))
            self.colors.landmark = tuple(config.get('visual_feedback', 'landmark_color', default=self.colors.landmark))
            self.line_thickness = config.get('visual_feedback', 'connector_thickness', default=3)
            self.point_radius = config.get('visual_feedback', 'landmark_radius', default=4)
        else:
            self.enabled = True
            self.line_thickness = 3
            self.point_radius = 4

    def resize(self, width: int, height: int):
        with self._lock:
            if width == self.width and height == self.height and self._image is not None:
                return
            self.width = int(width)
            self.height = int(height)
            self._image = np.zeros((self.height, self.width, 3), dtype=np.uint8)

    def clear(self):
        with self._lock:
            if self._image is not None:
                self._image[:] = 0

    def draw_landmarks(self, landmarks: Sequence[Tuple[float, float, float]]):
        """Draw skeleton connectors then joint points for one hand (normalized coords)."""
        if not self.enabled or len(landmarks) < 21:
            return
        with self._lock:
            if self._image is None:
                return
            h, w = self._image.shape[:2]
            points = [(int(lm[0] * w), int(lm[1] * h)) for lm in landmarks]

            for start_idx, end_idx in HAND_CONNECTIONS:
                cv2.line(self._image, points[start_idx], points[end_idx],
                         self.colors.connector, self.line_thickness, cv2.LINE_AA)

            for px, py in points:
                cv2.circle(self._image, (px, py), self.point_radius, self.colors.landmark, -1, cv2.LINE_AA)

    def snapshot(self) -> Optional[np.ndarray]:
        with self._lock:
            return None if self._image is None else self._image.copy()

    def compose(self, frame: np.ndarray) -> np.ndarray:
        """Return a copy of frame with the overlay painted on top."""
        out = frame.copy()
        with self._lock:
            overlay = self._image
            if overlay is None or overlay.shape[:2] != frame.shape[:2]:
                return out
            mask = overlay.any(axis=2)
            out[mask] = overlay[mask]
        return out
