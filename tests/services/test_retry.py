"""
retry_on_conflict: bounded retries of optimistic-concurrency conflicts.
"""

import pytest

from stock_kernel.exceptions import ConcurrentModificationError, ValidationError
from stock_services.retry import retry_on_conflict


class Flaky:
    def __init__(self, failures: int, error=None):
        self.calls = 0
        self.failures = failures
        self.error = error or ConcurrentModificationError("CentralProduct", "p1", 1, 2)

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "done"


class TestRetryOnConflict:

    def test_succeeds_after_conflicts(self, captured_logs):
        fn = Flaky(failures=2)
        sleeps = []

        assert retry_on_conflict(fn, max_attempts=3, backoff=0.1, sleep=sleeps.append) == "done"
        assert fn.calls == 3
        assert sleeps == pytest.approx([0.1, 0.2])
        assert sum(r["message"] == "conflict_retry" for r in captured_logs()) == 2

    def test_gives_up_after_max_attempts(self, captured_logs):
        fn = Flaky(failures=5)

        with pytest.raises(ConcurrentModificationError):
            retry_on_conflict(fn, max_attempts=3, sleep=lambda _: None)

        assert fn.calls == 3
        assert any(r["message"] == "conflict_retries_exhausted" for r in captured_logs())

    def test_non_retryable_errors_propagate_immediately(self):
        fn = Flaky(failures=1, error=ValidationError("bad"))

        with pytest.raises(ValidationError):
            retry_on_conflict(fn, max_attempts=5, sleep=lambda _: None)
        assert fn.calls == 1

    def test_single_attempt(self):
        fn = Flaky(failures=1)
        with pytest.raises(ConcurrentModificationError):
            retry_on_conflict(fn, max_attempts=1, sleep=lambda _: None)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            retry_on_conflict(lambda: None, max_attempts=0)
