# tests/aggregator/test_history.py
import pytest

from hostwatch.services.aggregator.src.history import HistoryRing


def test_overflow_evicts_oldest(make_snapshot):
    ring = HistoryRing(capacity=50)
    snapshots = [make_snapshot(captured_at=i) for i in range(55)]

    evicted = [ring.append(s) for s in snapshots]

    assert len(ring) == 50
    assert ring.snapshot() == snapshots[5:]
    assert evicted[:50] == [None] * 50
    assert evicted[50:] == snapshots[:5]
    assert ring.latest is snapshots[-1]


def test_snapshot_is_a_copy(make_snapshot):
    ring = HistoryRing(capacity=3)
    ring.append(make_snapshot(captured_at=1))

    copy = ring.snapshot()
    ring.append(make_snapshot(captured_at=2))

    assert [s.captured_at for s in copy] == [1]
    assert [s.captured_at for s in ring] == [1, 2]


def test_empty_ring():
    ring = HistoryRing()

    assert ring.capacity == 50
    assert ring.latest is None
    assert ring.snapshot() == []


def test_clear(make_snapshot):
    ring = HistoryRing(capacity=2)
    ring.append(make_snapshot())
    ring.clear()

    assert len(ring) == 0


@pytest.mark.parametrize("capacity", [0, -3])
def test_capacity_must_be_positive(capacity):
    with pytest.raises(ValueError):
        HistoryRing(capacity)
