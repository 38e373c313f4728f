"""Background worker for everything that may block on disk.

The tick thread only ever puts tasks on the queue and moves on. Snapshots
are frozen copies, so nothing mutable is shared with the worker thread.
"""
import json
import queue
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

from engine import snapshot
from engine.snapshot import Snapshot
from infra.logger import get_logger

log = get_logger(__name__)


class PersistenceLost(RuntimeError):
    """The background worker is gone; state can no longer be saved."""


@dataclass(frozen=True)
class SaveState:
    path: Path
    snapshot: Snapshot


@dataclass(frozen=True)
class LogPerf:
    summary: Dict[str, Dict[str, float]]


Task = Union[SaveState, LogPerf]

_STOP = object()


class BackgroundWorker:
    def __init__(self, name: str = "mission-bg"):
        self._q: "queue.SimpleQueue[object]" = queue.SimpleQueue()
        self._thread: Optional[threading.Thread] = None
        self._name = name
        self.saved = 0

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.alive:
            return
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def send(self, task: Task) -> None:
        """Queue a task without waiting. Raises PersistenceLost if the worker is dead."""
        if not self.alive:
            raise PersistenceLost("background thread is dead")
        self._q.put(task)

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._q.put(_STOP)
        self._thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        while True:
            task = self._q.get()
            if task is _STOP:
                return
            try:
                self._do(task)
            except Exception as e:
                log.error("background task %s failed: %s", type(task).__name__, e)

    def _do(self, task: Task) -> None:
        if isinstance(task, SaveState):
            snapshot.write(task.path, task.snapshot)
            self.saved += 1
            log.debug("saved state to %s", task.path)
        elif isinstance(task, LogPerf):
            log.info("perf %s", json.dumps(task.summary, sort_keys=True))
        else:
            log.warning("unknown background task %r", task)
