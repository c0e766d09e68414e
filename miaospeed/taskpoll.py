"""A weighted, concurrency-limited scheduler for multi-step tasks."""

from __future__ import annotations

import random
import signal
import threading
import time
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Optional

from miaospeed import logger
from miaospeed.structs import with_in_default

_OVERLOAD_PAUSE = 0.04
_LOOP_PAUSE = 0.01


class TaskPollExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    INTERRUPT = 2


class TaskPollItem(ABC):
    """A task made of ``count()`` steps, run one index at a time."""

    @property
    @abstractmethod
    def item_id(self) -> str:
        """Unique identifier of this task."""

    @property
    @abstractmethod
    def task_name(self) -> str:
        """Display name of this task."""

    def weight(self) -> int:
        """Relative share of scheduling slots."""
        return 1

    @abstractmethod
    def count(self) -> int:
        """Number of steps."""

    @abstractmethod
    def yield_item(self, index: int, controller: "TaskPollController") -> None:
        """Run step ``index``."""

    @abstractmethod
    def on_exit(self, exit_code: TaskPollExitCode) -> None:
        """Called once when the task finishes or is removed."""


class _Wrapper:
    def __init__(self, item: TaskPollItem) -> None:
        self.item = item
        self.counter = 0
        self._exit_lock = threading.Lock()
        self._exited = False

    @property
    def item_id(self) -> str:
        return self.item.item_id

    def on_exit(self, exit_code: TaskPollExitCode) -> None:
        with self._exit_lock:
            if self._exited:
                return
            self._exited = True
        self.item.on_exit(exit_code)


class TaskPollController:
    """Hands out task steps to worker threads, picking tasks by weight."""

    def __init__(self, name: str, concurrency: int, interval: float = 0.0, empty_wait: float = 0.2) -> None:
        self.name = name
        self.concurrency = with_in_default(concurrency, 1, 64, 16)
        self.interval = interval
        self.empty_wait = empty_wait
        self._poll: list[_Wrapper] = []
        self._running: dict[str, int] = {}
        self._current = 0
        self._lock = threading.Lock()

    def _detach(self, item_id: str) -> Optional[_Wrapper]:
        found: Optional[_Wrapper] = None
        kept = []
        for wrapper in self._poll:
            if wrapper.item_id == item_id:
                found = wrapper
            else:
                kept.append(wrapper)
        self._poll = kept
        return found

    def _populate(self) -> Optional[tuple[int, _Wrapper]]:
        with self._lock:
            if self._current >= self.concurrency:
                return None
            total_weight = sum(w.item.weight() for w in self._poll)
            factor = random.randrange(total_weight) if total_weight > 0 else 0
            for wrapper in self._poll:
                factor -= wrapper.item.weight()
                if factor < 0:
                    index = wrapper.counter
                    wrapper.counter += 1
                    if wrapper.counter >= wrapper.item.count():
                        self._detach(wrapper.item_id)
                    self._current += 1
                    self._running[wrapper.item_id] = self._running.get(wrapper.item_id, 0) + 1
                    return index, wrapper
        # no task left
        time.sleep(self.empty_wait)
        return None

    def _release(self, wrapper: _Wrapper) -> None:
        finished = False
        with self._lock:
            item_id = wrapper.item_id
            self._running[item_id] = self._running.get(item_id, 0) - 1
            waiting = any(w.item_id == item_id for w in self._poll)
            if not waiting and self._running[item_id] == 0:
                del self._running[item_id]
                finished = True
            if self._current > 0:
                self._current -= 1
        if finished:
            wrapper.on_exit(TaskPollExitCode.SUCCESS)

    def _run_step(self, index: int, wrapper: _Wrapper) -> None:
        try:
            wrapper.item.yield_item(index, self)
        except Exception as exc:  # noqa: BLE001 - a failing step must not kill the poll
            logger.wrap_error_pure("Task population err", exc)
        finally:
            self._release(wrapper)

    def awaiting_count(self) -> int:
        """Number of steps not yet handed out."""
        with self._lock:
            return sum(w.item.count() - w.counter for w in self._poll)

    def push(self, item: TaskPollItem) -> TaskPollItem:
        with self._lock:
            self._poll.append(_Wrapper(item))
        return item

    def remove(self, item_id: str, exit_code: TaskPollExitCode) -> None:
        """Drop a waiting task; a non-success code notifies it at once."""
        with self._lock:
            wrapper = self._detach(item_id)
        if wrapper is not None and exit_code != TaskPollExitCode.SUCCESS:
            logger.warn(f"Task Poll | Task interrupted, id={item_id} reason={int(exit_code)}")
            wrapper.on_exit(exit_code)

    def start(self, stop_event: Optional[threading.Event] = None) -> None:
        """Dispatch steps until ``stop_event`` is set."""
        if stop_event is None:
            stop_event = make_stop_event()
        while not stop_event.is_set():
            picked = self._populate()
            if picked is not None:
                index, wrapper = picked
                logger.log(
                    f"Task Poll | Task Populate, poll={self.name} type={wrapper.item.task_name} "
                    f"id={wrapper.item_id} index={index}"
                )
                threading.Thread(target=self._run_step, args=(index, wrapper), daemon=True).start()
                if self.interval > 0:
                    stop_event.wait(self.interval)
            else:
                # extra pause when over-populated
                stop_event.wait(_OVERLOAD_PAUSE)
            stop_event.wait(_LOOP_PAUSE)
        logger.log("task server shutted down.")


def make_stop_event() -> threading.Event:
    """Return an event that is set on SIGINT or SIGTERM (main thread only)."""
    event = threading.Event()

    def _handler(signum, frame):
        event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    return event