"""
Passive overlay consumer: shows the live gesture, no threshold, no game.
"""

from typing import Callable, Optional

from gestos.consumers.base import GestureConsumer
from gestos.vision.gesture_types import GESTURE_EMOJIS, GestureSignal


class OverlayConsumer(GestureConsumer):
    """
    Surfaces the current gesture signal for display.

    Args:
        on_gesture_update: optional callback receiving the display label
                           ("" when no hand is detected), called on changes only
    """

    def __init__(self, session, camera, config, canvas=None,
                 on_gesture_update: Optional[Callable[[str], None]] = None, name: str = "overlay"):
        super().__init__(name, session, camera, config, canvas)
        self.on_gesture_update = on_gesture_update
        self._last_label = ""

    def display_text(self) -> str:
        signal = self.current_gesture
        if signal is None:
            return "Sin gesto detectado"
        emoji = GESTURE_EMOJIS.get(signal.gesture, "")
        prefix = f"{emoji} " if emoji else ""
        return f"{prefix}{signal.label} ({signal.confidence}%) - Mano {signal.handedness}"

    def on_gesture(self, signal: Optional[GestureSignal]):
        label = signal.label if signal is not None else ""
        if label == self._last_label:
            return
        self._last_label = label
        if self.on_gesture_update:
            self.on_gesture_update(label)

    def on_deactivated(self):
        if self._last_label and self.on_gesture_update:
            self.on_gesture_update("")
        self._last_label = ""
