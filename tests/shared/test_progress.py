from src.shared.batch.progress import ProgressTracker


def test_counts_successes_and_errors():
    tracker = ProgressTracker(total_items=4, label="slides")

    tracker.increment(success=True)
    tracker.increment(success=True)
    tracker.increment(success=False)

    stats = tracker.get_stats()
    assert stats["processed"] == 3
    assert stats["successful"] == 2
    assert stats["errors"] == 1
    assert stats["total"] == 4
    assert stats["percent"] == 75.0


def test_should_log_after_interval():
    tracker = ProgressTracker(total_items=10, label="slides", log_interval=2, log_time_interval=3600)

    tracker.increment()
    assert tracker.should_log() is False
    tracker.increment()
    assert tracker.should_log() is True
