from tracker import EntryState, RetryQueue


def _queue(clock, **kwargs) -> RetryQueue[str]:
    return RetryQueue(base_delay=5.0, max_attempts=3, capacity=kwargs.pop("capacity", 100), clock=clock)


def test_first_retry_waits_base_delay(clock) -> None:
    queue = _queue(clock)
    queue.enqueue("progress:s1", "snapshot")

    assert queue.next_due_in() == 5.0
    assert queue.due() == []

    clock.advance(5)
    assert [e.item for e in queue.due()] == ["snapshot"]


def test_backoff_doubles_then_abandons(clock) -> None:
    queue = _queue(clock)
    queue.enqueue("view:s1", "start")

    clock.advance(5)
    (entry,) = queue.due()
    queue.mark_in_flight(entry)
    assert entry.state is EntryState.IN_FLIGHT
    queue.mark_failed(entry)

    rescheduled = queue.get("view:s1")
    assert rescheduled is not None
    assert rescheduled.attempts == 2
    assert rescheduled.due_at == clock.now + 10

    clock.advance(10)
    (entry,) = queue.due()
    queue.mark_in_flight(entry)
    queue.mark_failed(entry)

    assert entry.state is EntryState.ABANDONED
    assert len(queue) == 0
    assert queue.next_due_in() is None


def test_success_removes_entry(clock) -> None:
    queue = _queue(clock)
    entry = queue.enqueue("complete:s1", "done")
    queue.mark_in_flight(entry)
    queue.mark_succeeded(entry)

    assert entry.state is EntryState.SUCCEEDED
    assert "complete:s1" not in queue


def test_newer_item_replaces_stale_one(clock) -> None:
    queue = _queue(clock)
    stale = queue.enqueue("progress:s1", "t=15")
    queue.enqueue("progress:s1", "t=30")

    assert len(queue) == 1
    assert queue.get("progress:s1").item == "t=30"

    # Outcome of the superseded entry must not touch the newer one.
    queue.mark_succeeded(stale)
    queue.mark_failed(stale)
    assert queue.get("progress:s1").item == "t=30"
    assert queue.get("progress:s1").attempts == 1


def test_full_queue_drops_oldest(clock) -> None:
    queue = _queue(clock, capacity=2)
    queue.enqueue("a", "1")
    queue.enqueue("b", "2")
    queue.enqueue("c", "3")

    assert len(queue) == 2
    assert "a" not in queue
    assert "c" in queue


def test_discard_keeps_in_flight_entry(clock) -> None:
    queue = _queue(clock)
    entry = queue.enqueue("progress:s1", "t=15")
    queue.mark_in_flight(entry)
    queue.discard("progress:s1")
    assert "progress:s1" in queue

    queue.enqueue("progress:s2", "t=15")
    queue.discard("progress:s2")
    assert "progress:s2" not in queue
