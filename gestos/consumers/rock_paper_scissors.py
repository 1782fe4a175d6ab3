"""
Rock-Paper-Scissors for GestOS

    WAITING -> COUNTDOWN (3, 2, 1) -> PLAYING -> RESULT -> COUNTDOWN ...

During PLAYING the first mapped gesture resolves the round against a random
computer choice. If the play window runs out a random choice is played for
the user, so a round never stalls waiting for input.

The engine is a pure state machine driven by explicit timestamps (seconds);
the consumer feeds it gestures from the recognition session and wall-clock
ticks from the GUI timer.
"""

import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from gestos.consumers.base import GestureConsumer
from gestos.vision.gesture_types import GestureLabel, GestureSignal


class GameState(Enum):
    WAITING = "waiting"
    COUNTDOWN = "countdown"
    PLAYING = "playing"
    RESULT = "result"


class Choice(Enum):
    ROCK = "Piedra"
    PAPER = "Papel"
    SCISSORS = "Tijeras"


class GameResult(Enum):
    WIN = "win"
    LOSE = "lose"
    TIE = "tie"


CHOICES = (Choice.ROCK, Choice.PAPER, Choice.SCISSORS)

GESTURE_TO_CHOICE = {
    GestureLabel.CLOSED_FIST: Choice.ROCK,
    GestureLabel.OPEN_PALM: Choice.PAPER,
    GestureLabel.VICTORY: Choice.SCISSORS,
}

CHOICE_EMOJIS = {
    Choice.ROCK: "✊",
    Choice.PAPER: "✋",
    Choice.SCISSORS: "✌️",
}

# What each choice defeats
BEATS = {
    Choice.ROCK: Choice.SCISSORS,
    Choice.SCISSORS: Choice.PAPER,
    Choice.PAPER: Choice.ROCK,
}


def determine_winner(player: Choice, computer: Choice) -> GameResult:
    if player is computer:
        return GameResult.TIE
    return GameResult.WIN if BEATS[player] is computer else GameResult.LOSE


@dataclass
class GameStats:
    player_wins: int = 0
    computer_wins: int = 0
    ties: int = 0
    total_games: int = 0

    @property
    def win_percentage(self) -> int:
        if self.total_games == 0:
            return 0
        return int(self.player_wins * 100 / self.total_games + 0.5)

    def record(self, result: GameResult):
        self.total_games += 1
        if result is GameResult.WIN:
            self.player_wins += 1
        elif result is GameResult.LOSE:
            self.computer_wins += 1
        else:
            self.ties += 1


class RockPaperScissorsGame:
    """
    Turn engine. Every method takes the current time in seconds; when omitted
    time.monotonic() is used.
    """

    def __init__(self, config=None, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()
        if config:
            self.countdown_seconds = config.get('games', 'rock_paper_scissors', 'countdown_seconds', default=3)
            self.countdown_interval = config.get('games', 'rock_paper_scissors', 'countdown_interval', default=1.0)
            self.play_window = config.get('games', 'rock_paper_scissors', 'play_window', default=3.0)
        else:
            self.countdown_seconds = 3
            self.countdown_interval = 1.0
            self.play_window = 3.0

        self.stats = GameStats()
        self.state = GameState.WAITING
        self.countdown = 0
        self.player_choice: Optional[Choice] = None
        self.computer_choice: Optional[Choice] = None
        self.result: Optional[GameResult] = None
        self.substituted = False

        self._next_step = 0.0
        self._play_deadline = 0.0

    def new_game(self, now: Optional[float] = None):
        now = time.monotonic() if now is None else now
        self.state = GameState.COUNTDOWN
        self.countdown = self.countdown_seconds
        self.player_choice = None
        self.computer_choice = None
        self.result = None
        self.substituted = False
        self._next_step = now + self.countdown_interval
        if self.countdown <= 0:
            self._start_playing(now)

    def play_again(self, now: Optional[float] = None):
        self.new_game(now)

    def reset_stats(self):
        self.stats = GameStats()

    def tick(self, now: Optional[float] = None):
        now = time.monotonic() if now is None else now

        while self.state is GameState.COUNTDOWN and now >= self._next_step:
            step_time = self._next_step
            self.countdown -= 1
            self._next_step += self.countdown_interval
            if self.countdown <= 0:
                self._start_playing(step_time)

        if self.state is GameState.PLAYING and now >= self._play_deadline:
            print("⏱ No gesture in time, playing a random choice")
            self.resolve(self.rng.choice(CHOICES), substituted=True)

    def handle_gesture(self, signal: Optional[GestureSignal], now: Optional[float] = None) -> bool:
        """
        Resolve the round if the signal maps to a choice while PLAYING.

        Returns:
            True when the round was resolved.
        """
        if self.state is not GameState.PLAYING or signal is None:
            return False
        # Late signals after the window are covered by tick()
        if now is not None and now >= self._play_deadline:
            return False
        choice = GESTURE_TO_CHOICE.get(signal.gesture)
        if choice is None:
            return False
        print(f"🎮 Gesture {signal.label} -> {choice.value}")
        self.resolve(choice)
        return True

    def resolve(self, player: Choice, substituted: bool = False) -> GameResult:
        computer = self.rng.choice(CHOICES)
        result = determine_winner(player, computer)
        self.player_choice = player
        self.computer_choice = computer
        self.result = result
        self.substituted = substituted
        self.stats.record(result)
        self.state = GameState.RESULT
        return result

    def _start_playing(self, at: float):
        self.countdown = 0
        self.state = GameState.PLAYING
        self._play_deadline = at + self.play_window


class RockPaperScissorsConsumer(GestureConsumer):
    """Runs a RockPaperScissorsGame on the live gesture stream."""

    def __init__(self, session, camera, config, canvas=None, rng: Optional[random.Random] = None,
                 name: str = "rock_paper_scissors"):
        super().__init__(name, session, camera, config, canvas)
        self._rng = rng
        self._game_lock = threading.Lock()
        self.game = RockPaperScissorsGame(config, rng)

    def new_game(self, now: Optional[float] = None) -> bool:
        if not self.is_active:
            print(f"⚠ [{self.name}] Start the camera before playing")
            return False
        with self._game_lock:
            self.game.new_game(now)
        return True

    def play_again(self, now: Optional[float] = None) -> bool:
        return self.new_game(now)

    def reset_stats(self):
        with self._game_lock:
            self.game.reset_stats()

    def tick(self, now: Optional[float] = None):
        with self._game_lock:
            self.game.tick(now)

    def on_gesture(self, signal: Optional[GestureSignal]):
        with self._game_lock:
            self.game.handle_gesture(signal, time.monotonic())

    def on_deactivated(self):
        # A game session lives only while its consumer is active
        with self._game_lock:
            self.game = RockPaperScissorsGame(self.config, self._rng)
