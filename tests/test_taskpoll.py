import signal
import threading

import pytest

from miaospeed.taskpoll import (
    TaskPollController,
    TaskPollExitCode,
    TaskPollItem,
    make_stop_event,
)


class RecordingItem(TaskPollItem):
    def __init__(self, item_id, total, fail_on=None):
        self._id = item_id
        self.total = total
        self.fail_on = fail_on
        self.seen = []
        self.exits = []
        self.done = threading.Event()
        self._lock = threading.Lock()

    @property
    def item_id(self):
        return self._id

    @property
    def task_name(self):
        return "recording"

    def count(self):
        return self.total

    def yield_item(self, index, controller):
        with self._lock:
            self.seen.append(index)
        if index == self.fail_on:
            raise RuntimeError("step failed")

    def on_exit(self, exit_code):
        self.exits.append(exit_code)
        self.done.set()


def _run_until_done(controller, items):
    stop = threading.Event()
    thread = threading.Thread(target=controller.start, args=(stop,), daemon=True)
    thread.start()
    try:
        for item in items:
            assert item.done.wait(5)
    finally:
        stop.set()
        thread.join(5)


@pytest.mark.parametrize("requested, expected", [(0, 16), (100, 16), (8, 8), (1, 1), (64, 64)])
def test_concurrency_bounds(requested, expected):
    assert TaskPollController("poll", requested).concurrency == expected


def test_push_counts_awaiting_steps():
    controller = TaskPollController("poll", 4, empty_wait=0.01)
    controller.push(RecordingItem("a", 3))
    controller.push(RecordingItem("b", 2))
    assert controller.awaiting_count() == 5


def test_all_steps_run_and_exit_once():
    controller = TaskPollController("poll", 4, empty_wait=0.01)
    item = controller.push(RecordingItem("a", 5))
    _run_until_done(controller, [item])
    assert sorted(item.seen) == [0, 1, 2, 3, 4]
    assert item.exits == [TaskPollExitCode.SUCCESS]
    assert controller.awaiting_count() == 0


def test_several_items_share_the_poll():
    controller = TaskPollController("poll", 2, empty_wait=0.01)
    first = controller.push(RecordingItem("a", 3))
    second = controller.push(RecordingItem("b", 4))
    _run_until_done(controller, [first, second])
    assert sorted(first.seen) == [0, 1, 2]
    assert sorted(second.seen) == [0, 1, 2, 3]
    assert first.exits == [TaskPollExitCode.SUCCESS]
    assert second.exits == [TaskPollExitCode.SUCCESS]


def test_failing_step_still_finishes_task():
    controller = TaskPollController("poll", 1, empty_wait=0.01)
    item = controller.push(RecordingItem("a", 3, fail_on=1))
    _run_until_done(controller, [item])
    assert sorted(item.seen) == [0, 1, 2]
    assert item.exits == [TaskPollExitCode.SUCCESS]


def test_remove_with_interrupt_notifies():
    controller = TaskPollController("poll", 4, empty_wait=0.01)
    item = controller.push(RecordingItem("a", 3))
    controller.remove("a", TaskPollExitCode.INTERRUPT)
    assert item.exits == [TaskPollExitCode.INTERRUPT]
    assert controller.awaiting_count() == 0


def test_remove_with_success_is_silent():
    controller = TaskPollController("poll", 4, empty_wait=0.01)
    item = controller.push(RecordingItem("a", 3))
    controller.remove("a", TaskPollExitCode.SUCCESS)
    assert item.exits == []
    assert controller.awaiting_count() == 0


def test_remove_unknown_id_keeps_others():
    controller = TaskPollController("poll", 4, empty_wait=0.01)
    item = controller.push(RecordingItem("a", 3))
    controller.remove("missing", TaskPollExitCode.INTERRUPT)
    assert item.exits == []
    assert controller.awaiting_count() == 3


def test_stop_event_is_set_by_sigterm():
    previous_int = signal.getsignal(signal.SIGINT)
    previous_term = signal.getsignal(signal.SIGTERM)
    try:
        event = make_stop_event()
        assert event.is_set() is False
        signal.raise_signal(signal.SIGTERM)
        assert event.is_set() is True
    finally:
        signal.signal(signal.SIGINT, previous_int)
        signal.signal(signal.SIGTERM, previous_term)