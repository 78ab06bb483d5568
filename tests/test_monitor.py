from competitor_prices.monitor import FailureMonitor

from conftest import RecordingAlert


def test_alert_at_threshold(alerts):
    monitor = FailureMonitor(3, alerts)
    for i in range(3):
        monitor.record_failure(f"item {i}")
    assert len(alerts.messages) == 1
    assert "3 consecutive failures" in alerts.messages[0]
    assert "item 2" in alerts.messages[0]


def test_one_alert_per_streak(alerts):
    monitor = FailureMonitor(3, alerts)
    for i in range(7):
        monitor.record_failure(f"item {i}")
    assert len(alerts.messages) == 1
    assert monitor.consecutive_failures == 7


def test_success_resets_streak(alerts):
    monitor = FailureMonitor(3, alerts)
    monitor.record_failure("a")
    monitor.record_failure("b")
    monitor.record_success()
    monitor.record_failure("c")
    monitor.record_failure("d")
    assert alerts.messages == []
    assert monitor.total_failures == 4

    monitor.record_failure("e")
    assert len(alerts.messages) == 1


def test_new_streak_alerts_again(alerts):
    monitor = FailureMonitor(2, alerts)
    monitor.record_failure("a")
    monitor.record_failure("b")
    monitor.record_success()
    monitor.record_failure("c")
    monitor.record_failure("d")
    assert len(alerts.messages) == 2
    assert monitor.alerts_sent == 2


def test_run_failed_alerts_regardless_of_counter(alerts):
    monitor = FailureMonitor(3, alerts, run_label="Test Shop")
    monitor.run_failed(RuntimeError("db gone"))
    assert alerts.messages == ["Price scraper (Test Shop) failed to run completely: db gone"]


def test_undelivered_alert_still_counted():
    alert = RecordingAlert(delivered=False)
    monitor = FailureMonitor(1, alert)
    monitor.record_failure("x")
    assert monitor.alerts_sent == 1


def test_alert_errors_are_contained():
    def broken(message):
        raise OSError("smtp down")

    monitor = FailureMonitor(1, broken)
    monitor.record_failure("x")
    assert monitor.alerts_sent == 1
