import os
import sys
import threading
import time
import unittest
from unittest.mock import MagicMock, create_autospec

# Add path to source
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from gestos.app.recognition_session import INIT_ERROR_MESSAGE, RecognitionSession, SessionState
from gestos.config.config_manager import Config
from gestos.consumers.consumer_manager import ConsumerManager
from gestos.consumers.overlay import OverlayConsumer
from gestos.consumers.rock_paper_scissors import RockPaperScissorsConsumer
from gestos.consumers.simon_says import SimonSaysConsumer
from gestos.utils.camera import CAMERA_ERROR_MESSAGE, CameraAcquisition
from gestos.vision.gesture_types import GESTURE_EMOJIS, CameraAccessError, GestureLabel
from gestos_fakes import (
    FakeCameraAcquisition,
    FakeModelLoader,
    FakeRenderTarget,
    FakeVideo,
    ScriptedRandom,
    build_session,
    make_result,
)


class BlockingVideo(FakeVideo):
    """Video whose dimensions never arrive; waits until the activation is cancelled."""

    def __init__(self):
        super().__init__(ready=False)
        self.waiting = threading.Event()

    def wait_for_dimensions(self, timeout, poll_interval=0.1, cancelled=None):
        self.waiting.set()
        if cancelled is not None:
            cancelled.wait(5.0)
        return False


def record_stops(session, timeline, name):
    stop = session.stop_recognition

    def wrapped():
        timeline.append(('stop', name))
        stop()

    session.stop_recognition = wrapped


class TestOverlayConsumer(unittest.TestCase):
    def setUp(self):
        self.config = Config()
        self.loader = FakeModelLoader(results=[make_result('Open_Palm', 0.92, 'Right')])
        self.session, _, self.scheduler = build_session(self.config, loader=self.loader, name="overlay")
        self.timeline = []
        self.camera = FakeCameraAcquisition("overlay", self.timeline)
        self.updates = []
        self.consumer = OverlayConsumer(self.session, self.camera, self.config,
                                        canvas=FakeRenderTarget(), on_gesture_update=self.updates.append)

    def test_activate_runs_full_sequence(self):
        self.assertTrue(self.consumer.activate())

        self.assertTrue(self.consumer.is_active)
        self.assertTrue(self.consumer.is_streaming)
        self.assertIs(self.session.state, SessionState.RECOGNIZING)
        self.assertEqual(self.scheduler.pending_count(), 1)
        self.assertIsNone(self.consumer.error)

    def test_deactivate_stops_recognition_before_release(self):
        record_stops(self.session, self.timeline, "overlay")
        self.consumer.activate()

        self.consumer.deactivate()

        self.assertEqual(self.timeline[-2:], [('stop', 'overlay'), ('release', 'overlay')])
        self.assertFalse(self.consumer.is_active)
        self.assertFalse(self.consumer.is_streaming)
        self.assertIs(self.session.state, SessionState.READY)
        self.assertEqual(self.scheduler.pending_count(), 0)

    def test_deactivate_when_inactive_is_harmless(self):
        self.consumer.deactivate()
        self.assertFalse(self.consumer.is_active)
        self.assertEqual(self.updates, [])

    def test_gesture_updates_on_change_only(self):
        self.consumer.activate()
        video = self.camera.stream

        for _ in range(3):
            video.advance()
            self.scheduler.tick()
        self.assertEqual(self.updates, ["Palma Abierta"])

        self.loader.results = [make_result()]
        video.advance()
        self.scheduler.tick()
        self.assertEqual(self.updates, ["Palma Abierta", ""])

    def test_display_text(self):
        self.assertEqual(self.consumer.display_text(), "Sin gesto detectado")

        self.consumer.activate()
        self.camera.stream.advance()
        self.scheduler.tick()

        emoji = GESTURE_EMOJIS[GestureLabel.OPEN_PALM]
        self.assertEqual(self.consumer.display_text(), f"{emoji} Palma Abierta (92%) - Mano Derecha")

    def test_deactivate_clears_label(self):
        self.consumer.activate()
        self.camera.stream.advance()
        self.scheduler.tick()

        self.consumer.deactivate()
        self.assertEqual(self.updates, ["Palma Abierta", ""])

    def test_camera_error_then_retry(self):
        self.camera.error = CameraAccessError(CAMERA_ERROR_MESSAGE)

        self.assertFalse(self.consumer.activate())
        self.assertEqual(self.consumer.error, CAMERA_ERROR_MESSAGE)
        self.assertFalse(self.consumer.is_active)

        self.camera.error = None
        self.assertTrue(self.consumer.retry())
        self.assertIsNone(self.consumer.error)
        self.assertTrue(self.consumer.is_active)
        self.assertEqual(self.camera.restart_calls, 1)

    def test_camera_without_frames(self):
        camera = FakeCameraAcquisition(video_factory=lambda: FakeVideo(ready=False))
        consumer = OverlayConsumer(self.session, camera, self.config, canvas=FakeRenderTarget())

        self.assertFalse(consumer.activate())
        self.assertEqual(consumer.error, CAMERA_ERROR_MESSAGE)
        self.assertFalse(camera.is_streaming)
        self.assertIsNot(self.session.state, SessionState.RECOGNIZING)

    def test_model_error_skips_camera(self):
        loader = FakeModelLoader(remote_error=OSError("offline"), local_error=FileNotFoundError("missing"))
        session, _, _ = build_session(self.config, loader=loader)
        consumer = OverlayConsumer(session, self.camera, self.config, canvas=FakeRenderTarget())

        self.assertFalse(consumer.activate())
        self.assertEqual(consumer.error, INIT_ERROR_MESSAGE)
        self.assertEqual(self.camera.acquire_calls, 0)

        # Retry reloads the model once it is reachable again
        loader.local_error = None
        self.assertTrue(consumer.retry())
        self.assertIsNone(consumer.error)
        self.assertIs(session.state, SessionState.RECOGNIZING)

    def test_cancelled_activation_releases_camera(self):
        cancelled = threading.Event()
        cancelled.set()
        camera = FakeCameraAcquisition(video_factory=BlockingVideo)
        consumer = OverlayConsumer(self.session, camera, self.config, canvas=FakeRenderTarget())

        self.assertFalse(consumer.activate(cancelled))
        self.assertFalse(camera.is_streaming)
        self.assertFalse(consumer.is_active)

    def test_shutdown_releases_model(self):
        self.consumer.activate()
        self.consumer.shutdown()

        self.assertIs(self.session.state, SessionState.UNINITIALIZED)
        self.assertFalse(self.consumer.is_streaming)


class TestActivationProtocol(unittest.TestCase):
    def setUp(self):
        # Autospec keeps the collaborators honest about their signatures
        self.session = create_autospec(RecognitionSession, instance=True)
        self.session.initialize.return_value = True
        self.session.start_recognition.return_value = True
        self.camera = create_autospec(CameraAcquisition, instance=True)
        self.stream = self.camera.acquire.return_value
        self.stream.wait_for_dimensions.return_value = True

        self.calls = MagicMock()
        self.calls.attach_mock(self.session, 'session')
        self.calls.attach_mock(self.camera, 'camera')
        self.consumer = OverlayConsumer(self.session, self.camera, Config(), canvas=FakeRenderTarget())

    def call_names(self):
        return [name for name, _, _ in self.calls.mock_calls]

    def test_activation_order(self):
        self.assertTrue(self.consumer.activate())

        names = self.call_names()
        self.assertLess(names.index('session.initialize'), names.index('camera.acquire'))
        self.assertLess(names.index('camera.acquire'), names.index('session.start_recognition'))
        self.camera.acquire.assert_called_once_with('720p')
        self.session.start_recognition.assert_called_once_with(self.stream, self.consumer.canvas)

    def test_deactivation_order(self):
        self.consumer.activate()
        self.calls.reset_mock()

        self.consumer.deactivate()

        names = self.call_names()
        self.assertLess(names.index('session.remove_listener'), names.index('session.stop_recognition'))
        self.assertLess(names.index('session.stop_recognition'), names.index('camera.release'))

    def test_failed_start_releases_camera(self):
        self.session.start_recognition.return_value = False

        self.assertFalse(self.consumer.activate())

        self.camera.release.assert_called_once_with()
        self.assertFalse(self.consumer.is_active)


class TestConsumerManager(unittest.TestCase):
    def setUp(self):
        self.config = Config()
        self.timeline = []
        self.consumers = {}
        self.manager = ConsumerManager(self.config)

        for name, cls in (("overlay", OverlayConsumer),
                          ("rock_paper_scissors", RockPaperScissorsConsumer),
                          ("simon_says", SimonSaysConsumer)):
            session, _, _ = build_session(self.config, name=name)
            record_stops(session, self.timeline, name)
            camera = FakeCameraAcquisition(name, self.timeline)
            if cls is OverlayConsumer:
                consumer = cls(session, camera, self.config, canvas=FakeRenderTarget())
            else:
                consumer = cls(session, camera, self.config, canvas=FakeRenderTarget(), rng=ScriptedRandom([]))
            self.consumers[name] = consumer
            self.manager.register(consumer)

    def tearDown(self):
        self.manager.shutdown()

    def assert_single_active(self, name):
        for consumer_name, consumer in self.consumers.items():
            expected = consumer_name == name
            with self.subTest(consumer=consumer_name):
                self.assertEqual(consumer.is_active, expected)
                self.assertEqual(consumer.is_streaming, expected)
                self.assertEqual(consumer.session.state is SessionState.RECOGNIZING, expected)
        self.assertEqual(self.manager.active_name, name)

    def assert_camera_exclusive(self):
        holder = None
        for event, name in self.timeline:
            if event == 'acquire':
                self.assertIsNone(holder, f"{name} acquired while {holder} held the camera")
                holder = name
            elif event == 'release':
                self.assertEqual(holder, name)
                holder = None

    def test_only_one_consumer_active(self):
        for name in ("overlay", "simon_says", "rock_paper_scissors", "overlay", "simon_says"):
            self.assertTrue(self.manager.activate(name))
            self.assert_single_active(name)
        self.assert_camera_exclusive()

    def test_previous_consumer_stops_before_its_camera_is_released(self):
        self.manager.activate("overlay")
        self.manager.activate("simon_says")

        stop = self.timeline.index(('stop', 'overlay'), 0)
        release = self.timeline.index(('release', 'overlay'))
        acquire = self.timeline.index(('acquire', 'simon_says'))
        self.assertLess(stop, release)
        self.assertLess(release, acquire)

    def test_activating_active_consumer_is_noop(self):
        self.manager.activate("overlay")
        acquires = self.consumers["overlay"].camera.acquire_calls

        self.assertTrue(self.manager.activate("overlay"))
        self.assertEqual(self.consumers["overlay"].camera.acquire_calls, acquires)

    def test_unknown_consumer(self):
        with self.assertRaises(KeyError):
            self.manager.activate("pong")

    def test_duplicate_registration(self):
        with self.assertRaises(ValueError):
            self.manager.register(self.consumers["overlay"])

    def test_overrunning_activation_is_cancelled(self):
        config = Config(overrides={'consumers': {'activation_budget': 0.2}})
        manager = ConsumerManager(config)
        session, _, _ = build_session(config)
        camera = FakeCameraAcquisition(video_factory=BlockingVideo)
        consumer = OverlayConsumer(session, camera, config, canvas=FakeRenderTarget())
        manager.register(consumer)

        self.assertFalse(manager.activate("overlay"))

        self.assertFalse(consumer.is_active)
        self.assertFalse(camera.is_streaming)
        self.assertIsNot(session.state, SessionState.RECOGNIZING)
        self.assertIsNone(manager.active_name)

    def test_new_request_cancels_pending_activation(self):
        blocking = BlockingVideo()
        overlay = self.consumers["overlay"]
        overlay.camera.video_factory = lambda: blocking

        outcome = {}
        worker = threading.Thread(target=lambda: outcome.setdefault('ok', self.manager.activate("overlay")))
        worker.start()
        self.assertTrue(blocking.waiting.wait(2.0))

        self.assertTrue(self.manager.activate("rock_paper_scissors"))
        worker.join(2.0)

        self.assertFalse(outcome['ok'])
        self.assert_single_active("rock_paper_scissors")
        self.assert_camera_exclusive()

    def test_new_request_cancels_pending_retry(self):
        blocking = BlockingVideo()
        overlay = self.consumers["overlay"]
        overlay.camera.video_factory = lambda: blocking

        outcome = {}
        worker = threading.Thread(target=lambda: outcome.setdefault('ok', self.manager.retry("overlay")))
        worker.start()
        self.assertTrue(blocking.waiting.wait(2.0))

        started = time.monotonic()
        self.assertTrue(self.manager.activate("rock_paper_scissors"))
        self.assertLess(time.monotonic() - started, 1.0)
        worker.join(2.0)

        self.assertFalse(outcome['ok'])
        self.assertEqual(overlay.camera.restart_calls, 1)
        self.assert_single_active("rock_paper_scissors")
        self.assert_camera_exclusive()

    def test_overrunning_retry_is_cancelled(self):
        config = Config(overrides={'consumers': {'activation_budget': 0.2}})
        manager = ConsumerManager(config)
        session, _, _ = build_session(config)
        camera = FakeCameraAcquisition(video_factory=BlockingVideo)
        consumer = OverlayConsumer(session, camera, config, canvas=FakeRenderTarget())
        manager.register(consumer)

        started = time.monotonic()
        self.assertFalse(manager.retry("overlay"))

        self.assertLess(time.monotonic() - started, 2.0)
        self.assertFalse(consumer.is_active)
        self.assertFalse(camera.is_streaming)
        self.assertIsNone(manager.active_name)

    def test_retry_switches_consumer(self):
        self.manager.activate("rock_paper_scissors")
        self.assertTrue(self.manager.retry("overlay"))
        self.assert_single_active("overlay")

    def test_tick_reaches_active_consumer_only(self):
        self.manager.activate("simon_says")
        self.consumers["simon_says"].tick = MagicMock()
        self.consumers["rock_paper_scissors"].tick = MagicMock()

        self.manager.tick(now=1.0)

        self.consumers["simon_says"].tick.assert_called_once_with(1.0)
        self.consumers["rock_paper_scissors"].tick.assert_not_called()

    def test_deactivate_all(self):
        self.manager.activate("overlay")
        self.manager.deactivate_all()

        self.assertIsNone(self.manager.active_name)
        for consumer in self.consumers.values():
            self.assertFalse(consumer.is_streaming)

    def test_shutdown_releases_every_session(self):
        self.manager.activate("simon_says")
        self.manager.shutdown()

        for consumer in self.consumers.values():
            self.assertIs(consumer.session.state, SessionState.UNINITIALIZED)
            self.assertFalse(consumer.is_active)


if __name__ == '__main__':
    unittest.main()
