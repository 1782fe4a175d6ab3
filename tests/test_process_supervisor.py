import os
import sys
import threading
import unittest
from unittest.mock import MagicMock, patch

# Add path to source
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gestos.app.process_supervisor import ProcessSupervisor
from gestos.config.config_manager import Config


class FakeProcess:
    def __init__(self, args, cwd=None):
        self.args = args
        self.cwd = cwd
        self.returncode = None
        self.killed = 0
        self.terminated = 0
        self._exited = threading.Event()

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        self._exited.wait(timeout)
        return self.returncode

    def exit(self, code=0):
        self.returncode = code
        self._exited.set()

    def terminate(self):
        self.terminated += 1
        self.exit(-15)

    def kill(self):
        self.killed += 1
        self.exit(-9)


class FakePopen:
    def __init__(self, error=None):
        self.error = error
        self.processes = []

    def __call__(self, args, cwd=None):
        if self.error is not None:
            raise self.error
        proc = FakeProcess(args, cwd)
        self.processes.append(proc)
        return proc


class TestProcessSupervisor(unittest.TestCase):
    def setUp(self):
        self.config = Config()
        self.popen = FakePopen()
        self.supervisor = ProcessSupervisor(self.config, popen=self.popen, platform='linux')
        self.events = []
        self.supervisor.add_status_listener(self.events.append)

    def tearDown(self):
        self.supervisor.close_all()

    def test_execute_starts_executable(self):
        self.assertTrue(self.supervisor.execute('gestos-volumen'))

        proc = self.popen.processes[0]
        self.assertTrue(proc.args[0].endswith("GestOS Volumen.exe"))
        self.assertTrue(self.supervisor.get_process_status('gestos-volumen'))
        self.assertEqual(self.supervisor.running(), ['gestos-volumen'])
        self.assertEqual(self.events, [{"processId": "gestos-volumen", "isRunning": True}])

    def test_execute_twice_is_noop(self):
        self.supervisor.execute('gestos-mouse')
        self.assertFalse(self.supervisor.execute('gestos-mouse'))
        self.assertEqual(len(self.popen.processes), 1)

    def test_close_process_terminates(self):
        self.supervisor.execute('gestos-multimedia')
        proc = self.popen.processes[0]

        self.assertTrue(self.supervisor.close_process('gestos-multimedia'))

        self.assertEqual(proc.terminated, 1)
        self.assertFalse(self.supervisor.get_process_status('gestos-multimedia'))
        self.assertEqual(self.events[-1], {"processId": "gestos-multimedia", "isRunning": False})

        # Closing a stopped process reports nothing new
        self.assertFalse(self.supervisor.close_process('gestos-multimedia'))
        self.assertEqual(len(self.events), 2)

    def test_windows_close_also_kills_by_image_name(self):
        supervisor = ProcessSupervisor(self.config, popen=self.popen, platform='win32')
        supervisor.execute('gestos-sistema')
        proc = self.popen.processes[0]

        with patch('gestos.app.process_supervisor.subprocess.run') as run:
            supervisor.close_process('gestos-sistema')

        self.assertEqual(proc.killed, 1)
        run.assert_called_once()
        self.assertEqual(run.call_args[0][0], ['taskkill', '/F', '/IM', 'GestOS Sistema.exe'])

    def test_process_exit_is_reported(self):
        self.supervisor.execute('gestos-atajos')
        exited = threading.Event()
        self.supervisor.add_status_listener(
            lambda event: exited.set() if not event["isRunning"] else None
        )

        self.popen.processes[0].exit(1)

        self.assertTrue(exited.wait(2.0))
        self.assertFalse(self.supervisor.get_process_status('gestos-atajos'))
        self.assertEqual(self.supervisor.running(), [])

    def test_relaunch_after_exit(self):
        self.supervisor.execute('gestos-navegacion')
        self.supervisor.close_process('gestos-navegacion')

        self.assertTrue(self.supervisor.execute('gestos-navegacion'))
        self.assertEqual(len(self.popen.processes), 2)
        self.assertTrue(self.supervisor.get_process_status('gestos-navegacion'))

    def test_launch_failure_is_reported(self):
        supervisor = ProcessSupervisor(self.config, popen=FakePopen(error=FileNotFoundError("missing")),
                                       platform='linux')
        listener = MagicMock()
        supervisor.add_status_listener(listener)

        self.assertFalse(supervisor.execute('gestos-aplicaciones'))

        listener.assert_called_once_with({"processId": "gestos-aplicaciones", "isRunning": False})
        self.assertFalse(supervisor.get_process_status('gestos-aplicaciones'))

    def test_unknown_process_id(self):
        with self.assertRaises(KeyError):
            self.supervisor.execute('gestos-desconocido')

    def test_listener_errors_are_contained(self):
        self.supervisor.add_status_listener(MagicMock(side_effect=RuntimeError("boom")))
        self.assertTrue(self.supervisor.execute('gestos-volumen'))
        self.assertEqual(len(self.events), 1)

    def test_remove_listener(self):
        self.supervisor.remove_status_listener(self.events.append)
        self.supervisor.execute('gestos-volumen')
        self.assertEqual(self.events, [])

    def test_close_all(self):
        self.supervisor.execute('gestos-volumen')
        self.supervisor.execute('gestos-mouse')

        self.supervisor.close_all()

        self.assertEqual(self.supervisor.running(), [])
        self.assertTrue(all(proc.terminated == 1 for proc in self.popen.processes))


if __name__ == '__main__':
    unittest.main()
