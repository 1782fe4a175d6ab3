"""
Simon Says for GestOS

    WAITING -> SHOWING -> COUNTDOWN (3, 2, 1) -> PLAYING -> SUCCESS | FAILURE
    SUCCESS -> (auto, after success_delay) SHOWING with a longer sequence

The sequence has level + 2 gestures from a 5-gesture alphabet. While PLAYING
a gesture counts as one input when its confidence passes the gate and it
differs from the previously observed gesture: a held pose is read once, and
the same pose needed twice in a row must be separated by another gesture or
by dropping the hand. Generated sequences avoid adjacent repeats unless
allow_adjacent_repeats is set.

Like the Rock-Paper-Scissors engine, the state machine is driven by explicit
timestamps in seconds.
"""

import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from gestos.consumers.base import GestureConsumer
from gestos.vision.gesture_types import GestureLabel, GestureSignal


class SimonState(Enum):
    WAITING = "waiting"
    SHOWING = "showing"
    COUNTDOWN = "countdown"
    PLAYING = "playing"
    SUCCESS = "success"
    FAILURE = "failure"


GAME_GESTURES = (
    GestureLabel.CLOSED_FIST,
    GestureLabel.OPEN_PALM,
    GestureLabel.VICTORY,
    GestureLabel.THUMB_UP,
    GestureLabel.THUMB_DOWN,
)


@dataclass
class SimonStats:
    level: int = 1
    best_level: int = 1
    total_games: int = 0
    streak: int = 0
    best_streak: int = 0


class SimonSaysGame:
    """Sequence-memory engine."""

    def __init__(self, config=None, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

        def setting(key, default):
            if config is None:
                return default
            return config.get('games', 'simon_says', key, default=default)

        self.base_length = setting('base_length', 2)
        self.min_confidence = setting('min_confidence', 75)
        self.show_lead_in = setting('show_lead_in', 1.0)
        self.reveal_duration = setting('reveal_duration', 1.5)
        self.reveal_gap = setting('reveal_gap', 0.5)
        self.countdown_seconds = setting('countdown_seconds', 3)
        self.countdown_interval = setting('countdown_interval', 1.0)
        self.confirm_delay = setting('confirm_delay', 0.5)
        self.cooldown = setting('cooldown', 0.8)
        self.success_delay = setting('success_delay', 2.5)
        self.allow_adjacent_repeats = setting('allow_adjacent_repeats', False)

        self.stats = SimonStats()
        self._clear_round()

    # ------------------------------------------------------------------
    # Observables
    # ------------------------------------------------------------------

    @property
    def sequence(self) -> Tuple[GestureLabel, ...]:
        return tuple(self._sequence)

    @property
    def player_inputs(self) -> Tuple[GestureLabel, ...]:
        return tuple(self._inputs)

    @property
    def pending_gesture(self) -> Optional[GestureLabel]:
        return self._pending[0] if self._pending else None

    @property
    def last_observed(self) -> Optional[GestureLabel]:
        return self._last_observed

    def sequence_length(self, level: Optional[int] = None) -> int:
        return (self.stats.level if level is None else level) + self.base_length

    def in_cooldown(self, now: float) -> bool:
        return now < self._cooldown_until

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def generate_sequence(self, level: int) -> List[GestureLabel]:
        sequence: List[GestureLabel] = []
        for _ in range(self.sequence_length(level)):
            options = list(GAME_GESTURES)
            if sequence and not self.allow_adjacent_repeats:
                options.remove(sequence[-1])
            sequence.append(self.rng.choice(options))
        return sequence

    def start_game(self, now: Optional[float] = None):
        now = time.monotonic() if now is None else now
        self._clear_round()
        self._sequence = self.generate_sequence(self.stats.level)
        self.state = SimonState.SHOWING
        self._phase_start = now
        print(f"🧠 New sequence (level {self.stats.level}): {[g.value for g in self._sequence]}")

    def reset_game(self):
        """Back to WAITING at level 1, other stats kept."""
        self.stats.level = 1
        self._clear_round()

    def reset_stats(self):
        self.stats = SimonStats()
        self._clear_round()

    def tick(self, now: Optional[float] = None):
        now = time.monotonic() if now is None else now

        if self.state is SimonState.SHOWING:
            self._advance_showing(now)

        while self.state is SimonState.COUNTDOWN and now >= self._next_step:
            step_time = self._next_step
            self.countdown -= 1
            self._next_step += self.countdown_interval
            if self.countdown <= 0:
                self.countdown = 0
                self.state = SimonState.PLAYING
                self._last_observed = None
                self._phase_start = step_time

        if self.state is SimonState.PLAYING and self._pending and now >= self._pending[1]:
            label, judged_at = self._pending
            self._pending = None
            self._judge(label, judged_at)

        if self.state is SimonState.SUCCESS and now >= self._advance_at:
            self.start_game(self._advance_at)
            self._advance_showing(now)

    def handle_gesture(self, signal: Optional[GestureSignal], now: Optional[float] = None) -> bool:
        """
        Feed one published signal.

        Returns:
            True when the signal was accepted as an input.
        """
        now = time.monotonic() if now is None else now
        if self.state is not SimonState.PLAYING:
            return False

        if signal is None or signal.gesture is GestureLabel.NONE:
            self._last_observed = None
            return False
        if signal.confidence < self.min_confidence:
            return False

        label = signal.gesture
        if label not in GAME_GESTURES:
            self._last_observed = label
            return False
        if self._pending is not None or self.in_cooldown(now):
            return False
        if label is self._last_observed:
            return False

        self._last_observed = label
        self._pending = (label, now + self.confirm_delay)
        print(f"🎯 Gesture accepted: {signal.label} ({signal.confidence}%)")
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _clear_round(self):
        self.state = SimonState.WAITING
        self._sequence: List[GestureLabel] = []
        self._inputs: List[GestureLabel] = []
        self.show_index = -1
        self.showing_gesture: Optional[GestureLabel] = None
        self.countdown = 0
        self._phase_start = 0.0
        self._next_step = 0.0
        self._pending: Optional[Tuple[GestureLabel, float]] = None
        self._cooldown_until = 0.0
        self._advance_at = 0.0
        self._last_observed: Optional[GestureLabel] = None

    def _advance_showing(self, now: float):
        slot_length = self.reveal_duration + self.reveal_gap
        elapsed = now - self._phase_start - self.show_lead_in
        if elapsed < 0:
            self.show_index = -1
            self.showing_gesture = None
            return

        slot = int(elapsed // slot_length)
        if slot >= len(self._sequence):
            self.show_index = -1
            self.showing_gesture = None
            self.state = SimonState.COUNTDOWN
            self.countdown = self.countdown_seconds
            countdown_start = self._phase_start + self.show_lead_in + len(self._sequence) * slot_length
            self._next_step = countdown_start + self.countdown_interval
            return

        self.show_index = slot
        within = elapsed - slot * slot_length
        self.showing_gesture = self._sequence[slot] if within < self.reveal_duration else None

    def _judge(self, label: GestureLabel, at: float):
        self._inputs.append(label)
        position = len(self._inputs) - 1

        if self._sequence[position] is not label:
            self.state = SimonState.FAILURE
            self.stats.total_games += 1
            self.stats.streak = 0
            self.stats.level = 1
            print(f"❌ Wrong gesture at position {position + 1}: {label.value}")
            return

        if len(self._inputs) < len(self._sequence):
            self._cooldown_until = at + self.cooldown
            return

        self.state = SimonState.SUCCESS
        stats = self.stats
        stats.level += 1
        stats.best_level = max(stats.best_level, stats.level)
        stats.streak += 1
        stats.best_streak = max(stats.best_streak, stats.streak)
        self._advance_at = at + self.success_delay
        print(f"✓ Sequence complete, advancing to level {stats.level}")


class SimonSaysConsumer(GestureConsumer):
    """Runs a SimonSaysGame on the live gesture stream."""

    def __init__(self, session, camera, config, canvas=None, rng: Optional[random.Random] = None,
                 name: str = "simon_says"):
        super().__init__(name, session, camera, config, canvas)
        self._rng = rng
        self._game_lock = threading.Lock()
        self.game = SimonSaysGame(config, rng)

    def start_game(self, now: Optional[float] = None) -> bool:
        if not self.is_active:
            print(f"⚠ [{self.name}] Start the camera before playing")
            return False
        with self._game_lock:
            self.game.start_game(now)
        return True

    def reset_game(self):
        with self._game_lock:
            self.game.reset_game()

    def reset_stats(self):
        with self._game_lock:
            self.game.reset_stats()

    def tick(self, now: Optional[float] = None):
        with self._game_lock:
            self.game.tick(now)

    def on_gesture(self, signal: Optional[GestureSignal]):
        with self._game_lock:
            self.game.handle_gesture(signal)

    def on_deactivated(self):
        with self._game_lock:
            self.game = SimonSaysGame(self.config, self._rng)
