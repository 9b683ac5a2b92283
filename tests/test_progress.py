import threading

from media_organizer.progress import ProgressCounters, ProgressMonitor


def test_counters_are_thread_safe():
    counters = ProgressCounters()

    def bump():
        for _ in range(1000):
            counters.increment('processed')

    threads = [threading.Thread(target=bump) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert counters.get('processed') == 8000
    snap = counters.snapshot()
    assert snap.processed == 8000
    assert snap.errors == 0


def test_monitor_stops_cleanly():
    counters = ProgressCounters()
    counters.increment('discovered', 3)
    counters.increment('transferred', 2)

    monitor = ProgressMonitor(counters, interval=0.01, enabled=False)
    monitor.start()
    monitor.stop()
    assert not monitor.is_alive()
