"""
Process Supervisor for GestOS

Launches the per-mode gesture control executables (volume, apps, media,
system, shortcuts, mouse, navigation) and reports their running state.

Every start, exit, launch failure and close is pushed to the status
listeners as {"processId": ..., "isRunning": ...}.
"""

import subprocess
import sys
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

StatusListener = Callable[[Dict], None]


class ProcessSupervisor:
    """
    Fire-and-forget launcher for the GestOS mode executables.

    Args:
        config: Config instance (processes.executables_dir, processes.executables)
        popen: process factory, subprocess.Popen by default
        platform: sys.platform value; "win32" also force-kills by image name
    """

    def __init__(self, config, popen: Optional[Callable] = None, platform: Optional[str] = None):
        self.config = config
        self._popen = popen or subprocess.Popen
        self.platform = platform or sys.platform
        self.executables: Dict[str, str] = dict(config.get('processes', 'executables', default={}) or {})
        self.executables_dir = Path(config.get('processes', 'executables_dir', default='executables'))

        self._lock = threading.Lock()
        self._processes: Dict[str, subprocess.Popen] = {}
        self._listeners: List[StatusListener] = []

    def add_status_listener(self, listener: StatusListener):
        self._listeners.append(listener)

    def remove_status_listener(self, listener: StatusListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def executable_path(self, process_id: str) -> Path:
        if process_id not in self.executables:
            raise KeyError(f"Unknown process id: {process_id}")
        return self.executables_dir / self.executables[process_id]

    def execute(self, process_id: str) -> bool:
        """
        Start the executable for process_id. No-op if it is already running.

        Returns:
            True if a new process was started.
        """
        path = self.executable_path(process_id)
        name = self.executables[process_id]

        with self._lock:
            if process_id in self._processes:
                print(f"⚠ {name} is already running")
                return False

            print(f"🔄 Starting {name} ({path})...")
            try:
                proc = self._popen([str(path)], cwd=str(path.parent) if path.parent.exists() else None)
            except OSError as e:
                print(f"❌ Could not start {name}: {e}")
                failed = True
            else:
                failed = False
                self._processes[process_id] = proc

        if failed:
            self._notify(process_id, False)
            return False

        self._notify(process_id, True)
        watcher = threading.Thread(target=self._watch, args=(process_id, proc),
                                   name=f"gestos-watch-{process_id}", daemon=True)
        watcher.start()
        return True

    def close_process(self, process_id: str) -> bool:
        """
        Stop the executable for process_id.

        Returns:
            True if a running process was closed.
        """
        with self._lock:
            proc = self._processes.pop(process_id, None)
        if proc is None:
            return False

        name = self.executables.get(process_id, process_id)
        print(f"🛑 Closing {name}...")
        try:
            if self.platform == 'win32':
                proc.kill()
                self._force_kill_image(name)
            else:
                proc.terminate()
        except OSError as e:
            print(f"⚠ Error closing {name}: {e}")

        self._notify(process_id, False)
        return True

    def get_process_status(self, process_id: str) -> bool:
        with self._lock:
            proc = self._processes.get(process_id)
        return proc is not None and proc.poll() is None

    def running(self) -> List[str]:
        with self._lock:
            return [pid for pid, proc in self._processes.items() if proc.poll() is None]

    def close_all(self):
        with self._lock:
            ids = list(self._processes)
        if ids:
            print(f"🧹 Closing {len(ids)} running mode(s)...")
        for process_id in ids:
            self.close_process(process_id)

    def _force_kill_image(self, image_name: str):
        # Child processes spawned by the executable are not covered by kill()
        try:
            subprocess.run(['taskkill', '/F', '/IM', image_name],
                           stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=False)
        except OSError as e:
            print(f"⚠ taskkill failed for {image_name}: {e}")

    def _watch(self, process_id: str, proc):
        code = proc.wait()
        with self._lock:
            owned = self._processes.get(process_id) is proc
            if owned:
                del self._processes[process_id]
        if owned:
            print(f"🛑 {self.executables.get(process_id, process_id)} exited with code {code}")
            self._notify(process_id, False)

    def _notify(self, process_id: str, is_running: bool):
        event = {"processId": process_id, "isRunning": is_running}
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                print(f"⚠ Status listener failed: {e}")
