"""
Consumer Manager for GestOS

Keeps the gesture consumers mutually exclusive: the camera is the one
physically exclusive device, so before a consumer activates every other
consumer is fully deactivated (recognition stopped, camera released).

A new request cancels an activation or restart that is still in progress,
and an activation that overruns its budget is cancelled and torn down.
"""

import threading
from typing import Callable, Dict, List, Optional

from gestos.consumers.base import GestureConsumer


class ConsumerManager:
    def __init__(self, config=None):
        self.activation_budget = config.get('consumers', 'activation_budget', default=45.0) if config else 45.0
        self._consumers: Dict[str, GestureConsumer] = {}
        self._lock = threading.Lock()
        self._cancel_lock = threading.Lock()
        self._current_cancel: Optional[threading.Event] = None

    def register(self, consumer: GestureConsumer):
        if consumer.name in self._consumers:
            raise ValueError(f"Consumer already registered: {consumer.name}")
        self._consumers[consumer.name] = consumer

    def get(self, name: str) -> GestureConsumer:
        return self._consumers[name]

    @property
    def names(self) -> List[str]:
        return list(self._consumers)

    @property
    def active_consumer(self) -> Optional[GestureConsumer]:
        for consumer in self._consumers.values():
            if consumer.is_active:
                return consumer
        return None

    @property
    def active_name(self) -> Optional[str]:
        consumer = self.active_consumer
        return consumer.name if consumer else None

    def activate(self, name: str) -> bool:
        """
        Deactivate every other consumer, then activate name.

        Returns:
            True when the consumer ended up active.

        Raises:
            KeyError: unknown consumer name
        """
        target = self._consumers[name]
        self._cancel_in_progress()

        with self._lock:
            self._deactivate_others(target)
            if target.is_active:
                return True

            print(f"🔄 Activating {name}...")
            return self._run_guarded(name, target, target.activate)

    def retry(self, name: str) -> bool:
        """Restart name from scratch (camera and, after an error, the model)."""
        target = self._consumers[name]
        self._cancel_in_progress()

        with self._lock:
            self._deactivate_others(target)
            print(f"🔄 Restarting {name}...")
            return self._run_guarded(name, target, target.restart)

    def _deactivate_others(self, target: GestureConsumer):
        for other in self._consumers.values():
            if other is not target:
                other.deactivate()

    def _run_guarded(self, name: str, target: GestureConsumer,
                     work: Callable[[threading.Event], bool]) -> bool:
        """Run work in a worker thread under the activation budget; caller holds _lock."""
        cancelled = threading.Event()
        with self._cancel_lock:
            self._current_cancel = cancelled

        outcome = {}
        worker = threading.Thread(
            target=lambda: outcome.setdefault('ok', work(cancelled)),
            name=f"gestos-activate-{name}",
            daemon=True,
        )
        worker.start()
        worker.join(self.activation_budget)

        if worker.is_alive():
            print(f"⚠ Activation of {name} exceeded {self.activation_budget:.0f}s, cancelling")
            cancelled.set()
            worker.join()
            target.deactivate()
            outcome['ok'] = False
        elif cancelled.is_set() and target.is_active:
            # Superseded by a newer request while finishing
            target.deactivate()
            outcome['ok'] = False

        with self._cancel_lock:
            if self._current_cancel is cancelled:
                self._current_cancel = None
        return bool(outcome.get('ok'))

    def deactivate(self, name: str):
        self._consumers[name].deactivate()

    def deactivate_all(self):
        self._cancel_in_progress()
        with self._lock:
            for consumer in self._consumers.values():
                consumer.deactivate()

    def tick(self, now: Optional[float] = None):
        consumer = self.active_consumer
        if consumer is not None:
            consumer.tick(now)

    def shutdown(self):
        print("🧹 Shutting down gesture consumers...")
        self._cancel_in_progress()
        with self._lock:
            for consumer in self._consumers.values():
                try:
                    consumer.shutdown()
                except Exception as e:
                    print(f"⚠ Error shutting down {consumer.name}: {e}")

    def _cancel_in_progress(self):
        with self._cancel_lock:
            if self._current_cancel is not None:
                self._current_cancel.set()
