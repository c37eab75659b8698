from datetime import datetime, timedelta, timezone

from studio.domain.cancellation import hours_until, is_free_cancellation

START = datetime(2030, 3, 10, 18, 0, tzinfo=timezone.utc)


class TestCancellationWindow:
    def test_hours_until_start(self):
        assert hours_until(START, START - timedelta(hours=30)) == 30.0
        assert hours_until(START, START + timedelta(hours=1)) == -1.0

    def test_exactly_on_the_window_is_free(self):
        assert is_free_cancellation(START, START - timedelta(hours=24), 24)

    def test_inside_the_window_is_not_free(self):
        assert not is_free_cancellation(START, START - timedelta(hours=23, minutes=59), 24)

    def test_zero_window_is_free_until_start(self):
        assert is_free_cancellation(START, START, 0)
        assert not is_free_cancellation(START, START + timedelta(minutes=1), 0)
