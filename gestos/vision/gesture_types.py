"""
Gesture data types shared by the model adapter, the recognition session
and the gesture consumers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class GestOSError(Exception):
    """Base class for GestOS errors."""


class InitializationError(GestOSError):
    """The gesture model could not be loaded from any source."""


class InitializationTimeout(InitializationError, TimeoutError):
    """Model loading did not finish within the configured timeout."""


class CameraAccessError(GestOSError):
    """Camera permission denied or device unavailable."""


class AdapterError(GestOSError):
    """Genuine adapter failure (used before initialize, or after close)."""


class TransientFrameError(GestOSError):
    """A single frame could not be classified. The loop keeps going."""


class GestureLabel(Enum):
    """Closed set of labels produced by the MediaPipe gesture recognizer."""
    NONE = "None"
    CLOSED_FIST = "Closed_Fist"
    OPEN_PALM = "Open_Palm"
    POINTING_UP = "Pointing_Up"
    THUMB_DOWN = "Thumb_Down"
    THUMB_UP = "Thumb_Up"
    VICTORY = "Victory"
    I_LOVE_YOU = "ILoveYou"

    @classmethod
    def from_category(cls, category_name: str) -> "GestureLabel":
        """Map a recognizer category name to a label; unknown names become NONE."""
        try:
            return cls(category_name)
        except ValueError:
            return cls.NONE


GESTURE_TRANSLATIONS = {
    GestureLabel.NONE: "Ninguno",
    GestureLabel.CLOSED_FIST: "Puño Cerrado",
    GestureLabel.OPEN_PALM: "Palma Abierta",
    GestureLabel.POINTING_UP: "Apuntando Arriba",
    GestureLabel.THUMB_DOWN: "Pulgar Abajo",
    GestureLabel.THUMB_UP: "Pulgar Arriba",
    GestureLabel.VICTORY: "Victoria",
    GestureLabel.I_LOVE_YOU: "Te Amo",
}

HANDEDNESS_TRANSLATIONS = {
    "Left": "Izquierda",
    "Right": "Derecha",
}

# Emoji shown next to the display label in the GUI
GESTURE_EMOJIS = {
    GestureLabel.NONE: "",
    GestureLabel.CLOSED_FIST: "✊",
    GestureLabel.OPEN_PALM: "✋",
    GestureLabel.POINTING_UP: "☝️",
    GestureLabel.THUMB_DOWN: "👎",
    GestureLabel.THUMB_UP: "👍",
    GestureLabel.VICTORY: "✌️",
    GestureLabel.I_LOVE_YOU: "🤟",
}

# 21-point MediaPipe hand skeleton
HAND_CONNECTIONS = (
    # Thumb
    (0, 1), (1, 2), (2, 3), (3, 4),
    # Index
    (0, 5), (5, 6), (6, 7), (7, 8),
    # Middle
    (9, 10), (10, 11), (11, 12),
    # Ring
    (13, 14), (14, 15), (15, 16),
    # Pinky
    (0, 17), (17, 18), (18, 19), (19, 20),
    # Palm
    (5, 9), (9, 13), (13, 17),
)

Landmark = Tuple[float, float, float]


@dataclass(frozen=True)
class HandDetection:
    """One classified hand: top-ranked label, confidence in [0, 1], handedness."""
    label: GestureLabel
    confidence: float
    handedness: str = "Right"


@dataclass
class DetectionFrame:
    """
    Classifier output for one video frame.

    hands holds zero or one detection (single tracked hand); landmarks holds
    the normalized (x, y, z) points of every detected hand for the overlay.
    """
    hands: List[HandDetection] = field(default_factory=list)
    landmarks: List[List[Landmark]] = field(default_factory=list)

    @property
    def has_hand(self) -> bool:
        return bool(self.hands)


@dataclass(frozen=True)
class GestureSignal:
    """Human-facing view of the latest detection, published by the session."""
    gesture: GestureLabel
    label: str
    confidence: int
    handedness: str

    @classmethod
    def from_detection(cls, detection: HandDetection) -> "GestureSignal":
        return cls(
            gesture=detection.label,
            label=GESTURE_TRANSLATIONS.get(detection.label, detection.label.value),
            confidence=int(detection.confidence * 100 + 0.5),
            handedness=HANDEDNESS_TRANSLATIONS.get(detection.handedness, detection.handedness),
        )


def display_name(label: Optional[GestureLabel]) -> str:
    """Display name for a label, empty string for no label."""
    if label is None:
        return ""
    return GESTURE_TRANSLATIONS.get(label, label.value)
