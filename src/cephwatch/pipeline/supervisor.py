"""
Runs each pipeline task on its own thread and keeps it alive.

A task is anything with a `name` and a `run(stop_event)` method. If run()
raises TaskExit the task is done for good (no capture device, bad filter).
Any other exception gets logged with its traceback and the task is
restarted after an exponential backoff, so one crash doesn't silently
cost us coverage for the rest of the process lifetime.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from cephwatch.errors import TaskExit

log = logging.getLogger(__name__)


@dataclass
class TaskState:
    name: str
    status: str = "pending"   # pending, running, restarting, exited, stopped
    restarts: int = 0
    last_error: Optional[str] = None


class Supervisor:

    def __init__(
        self,
        stop: Optional[threading.Event] = None,
        initial_backoff: float = 1.0,
        max_backoff: float = 60.0,
    ):
        self.stop_event = stop or threading.Event()
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._threads: List[threading.Thread] = []
        self.states: Dict[str, TaskState] = {}

    def spawn(self, task) -> threading.Thread:
        state = TaskState(name=task.name)
        self.states[task.name] = state
        thread = threading.Thread(
            target=self._supervise,
            args=(task, state),
            name=f"cephwatch-{task.name}",
            daemon=True,
        )
        self._threads.append(thread)
        thread.start()
        return thread

    def _supervise(self, task, state: TaskState):
        backoff = self._initial_backoff
        while not self.stop_event.is_set():
            state.status = "running"
            try:
                task.run(self.stop_event)
            except TaskExit as e:
                log.error("%s: %s -- task exiting, other tasks carry on", task.name, e)
                state.status = "exited"
                state.last_error = str(e)
                return
            except Exception as e:
                state.restarts += 1
                state.last_error = f"{type(e).__name__}: {e}"
                state.status = "restarting"
                log.exception("%s crashed (restart %d in %.1fs)", task.name, state.restarts, backoff)
                if self.stop_event.wait(backoff):
                    break
                backoff = min(backoff * 2, self._max_backoff)
                continue
            # run() returned normally: it saw the stop event
            break
        state.status = "stopped"

    def stop(self, timeout: float = 5.0) -> bool:
        """Signal every task and wait for its thread. False if any are still alive."""
        self.stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        alive = [t.name for t in self._threads if t.is_alive()]
        if alive:
            log.warning("Threads still running after stop: %s", ", ".join(alive))
        return not alive

    def alive(self) -> List[str]:
        return [t.name for t in self._threads if t.is_alive()]
