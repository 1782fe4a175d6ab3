#!/usr/bin/env python3
"""
GestOS - gesture recognition playground
Main Application

Wires the camera, the gesture recognizer and the gesture consumers (live
overlay, Rock-Paper-Scissors, Simon Says) together, plus the launcher for the
external gesture control modes. Runs with the PyQt6 window or headless.
"""

import argparse
import sys
import time
from typing import Callable, Dict, Optional

from gestos.app.frame_scheduler import ThreadFrameScheduler
from gestos.app.process_supervisor import ProcessSupervisor
from gestos.app.recognition_session import RecognitionSession
from gestos.config.config_manager import Config, load_config
from gestos.consumers.consumer_manager import ConsumerManager
from gestos.consumers.overlay import OverlayConsumer
from gestos.consumers.rock_paper_scissors import GameState, RockPaperScissorsConsumer
from gestos.consumers.simon_says import SimonSaysConsumer, SimonState
from gestos.utils.camera import CameraAcquisition, DEFAULT_RESOLUTION_TIERS
from gestos.vision.model_adapter import GestureModelAdapter

MODES = ('overlay', 'rock_paper_scissors', 'simon_says')


class GestOSApplication:
    """
    Builds one recognition session, model adapter and camera acquisition per
    consumer; only one consumer is active at a time.

    Args:
        config: Config instance
        camera_idx: camera device index (None = camera.index from config)
        capture_factory: camera factory, cv2.VideoCapture by default
        model_loader: model loader for the adapters, MediaPipe by default
        scheduler: frame scheduler shared by the sessions
        popen: process factory for the supervisor
    """

    def __init__(self, config: Config, camera_idx: Optional[int] = None,
                 capture_factory: Optional[Callable] = None, model_loader=None,
                 scheduler=None, popen: Optional[Callable] = None):
        self.config = config
        self.scheduler = scheduler or ThreadFrameScheduler(
            fps=config.get('session', 'frame_rate', default=60)
        )

        def parts(name):
            adapter = GestureModelAdapter(config, loader=model_loader)
            session = RecognitionSession(adapter, self.scheduler, config, name=name)
            camera = CameraAcquisition(config, capture_factory=capture_factory, device_index=camera_idx)
            return session, camera

        self.overlay = OverlayConsumer(*parts('overlay'), config)
        self.rock_paper_scissors = RockPaperScissorsConsumer(*parts('rock_paper_scissors'), config)
        self.simon_says = SimonSaysConsumer(*parts('simon_says'), config)

        self.consumers = ConsumerManager(config)
        for consumer in (self.overlay, self.rock_paper_scissors, self.simon_says):
            self.consumers.register(consumer)

        self.processes = ProcessSupervisor(config, popen=popen)
        self._cleaned_up = False

        print("✓ GestOS initialized")
        print(f"  Modes: {', '.join(MODES)}")

    def activate(self, mode: str) -> bool:
        ok = self.consumers.activate(mode)
        if not ok:
            error = self.consumers.get(mode).error
            print(f"❌ Could not start {mode}: {error}")
        return ok

    def stop(self):
        self.consumers.deactivate_all()

    def run_headless(self, mode: str, duration: Optional[float] = None) -> int:
        """
        Activate mode and print gesture and game updates until interrupted
        (or until duration seconds have passed).
        """
        print(f"🖥️ Running {mode} in headless mode (Ctrl+C to quit)")
        if not self.activate(mode):
            return 1

        consumer = self.consumers.get(mode)
        if mode == 'rock_paper_scissors':
            consumer.new_game()
        elif mode == 'simon_says':
            consumer.start_game()

        interval = self.config.get('display', 'refresh_interval_ms', default=33) / 1000.0
        deadline = time.monotonic() + duration if duration else None
        last_line = None
        try:
            while consumer.is_active:
                consumer.tick()
                line = self._status_line(mode)
                if line != last_line:
                    print(line)
                    last_line = line
                if mode == 'rock_paper_scissors' and consumer.game.state is GameState.RESULT:
                    time.sleep(2.0)
                    consumer.play_again()
                if deadline and time.monotonic() >= deadline:
                    break
                time.sleep(interval)
        except KeyboardInterrupt:
            print("\n⚠ Interrupted by user")
        return 0

    def _status_line(self, mode: str) -> str:
        consumer = self.consumers.get(mode)
        if mode == 'overlay':
            return consumer.display_text()

        gesture = consumer.current_gesture
        seen = f"{gesture.label} ({gesture.confidence}%)" if gesture else "-"
        game = consumer.game
        if mode == 'rock_paper_scissors':
            state = game.state.value
            if game.state is GameState.COUNTDOWN:
                state = f"countdown {game.countdown}"
            elif game.state is GameState.RESULT:
                state = (f"{game.player_choice.value} vs {game.computer_choice.value}: {game.result.value} "
                         f"[{game.stats.player_wins}-{game.stats.computer_wins}-{game.stats.ties}, "
                         f"{game.stats.win_percentage}%]")
            return f"✊ {state} | gesture: {seen}"

        state = game.state.value
        if game.state is SimonState.SHOWING and game.showing_gesture is not None:
            state = f"showing {game.show_index + 1}/{len(game.sequence)}: {game.showing_gesture.value}"
        elif game.state is SimonState.COUNTDOWN:
            state = f"countdown {game.countdown}"
        elif game.state is SimonState.PLAYING:
            state = f"playing {len(game.player_inputs)}/{len(game.sequence)}"
        return f"🧠 level {game.stats.level} | {state} | gesture: {seen}"

    def status(self) -> Dict:
        return {
            'active': self.consumers.active_name,
            'processes': {pid: self.processes.get_process_status(pid) for pid in self.processes.executables},
        }

    def cleanup(self):
        """Clean up resources."""
        if self._cleaned_up:
            return
        self._cleaned_up = True
        print("\n🧹 Cleaning up...")
        try:
            self.consumers.shutdown()
        except Exception as e:
            print(f"⚠ Error stopping consumers: {e}")
        try:
            self.processes.close_all()
        except Exception as e:
            print(f"⚠ Error closing processes: {e}")
        self.scheduler.close()
        print("✓ GestOS stopped\n")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="GestOS - hand gesture recognition playground"
    )
    parser.add_argument(
        '--config', type=str, default=None,
        help='Path to config.json (default: bundled gestos/config/config.json)'
    )
    parser.add_argument(
        '--camera', type=int, default=None,
        help='Camera device index (default: camera.index from config)'
    )
    parser.add_argument(
        '--mode', choices=MODES, default='overlay',
        help='Consumer to start with (default: overlay)'
    )
    parser.add_argument(
        '--resolution', choices=sorted(DEFAULT_RESOLUTION_TIERS), default=None,
        help='Camera resolution tier (default: camera.resolution from config)'
    )
    parser.add_argument(
        '--headless', action='store_true',
        help='Run without the window, printing gestures to the console'
    )

    args = parser.parse_args()

    overrides = {}
    if args.camera is not None:
        overrides.setdefault('camera', {})['index'] = args.camera
    if args.resolution:
        overrides.setdefault('camera', {})['resolution'] = args.resolution
    config = load_config(args.config, **overrides)

    app = None
    try:
        app = GestOSApplication(config, camera_idx=args.camera)
        if args.headless:
            return app.run_headless(args.mode)

        # PyQt must own the main thread
        from gestos.gui.main_window import run_gui
        return run_gui(app, initial_mode=args.mode)

    except KeyboardInterrupt:
        print("\n⚠ Interrupted by user")
    except Exception as e:
        print(f"\n❌ Error: {e}")
        import traceback
        traceback.print_exc()
        return 1
    finally:
        if app is not None:
            app.cleanup()

    return 0


if __name__ == "__main__":
    sys.exit(main())
