import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from whitelist_vote.core.errors import (
    TERMINAL_ERRORS,
    ExternalServiceError,
    NotFoundError,
    TransientStoreError,
)
from whitelist_vote.core.retry import RetryPolicy, is_transient


def _operational() -> OperationalError:
    return OperationalError("UPDATE applications", {}, Exception("database is locked"))


def test_delay_schedule_is_bounded():
    policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=5000)
    assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


def test_is_transient_classification():
    assert is_transient(_operational())
    assert is_transient(TransientStoreError())
    assert not is_transient(NotFoundError())
    assert not is_transient(IntegrityError("INSERT", {}, Exception("unique")))
    assert not is_transient(ValueError("nope"))


@pytest.mark.parametrize("error_type", TERMINAL_ERRORS)
def test_terminal_engine_errors_are_never_transient(error_type):
    assert not is_transient(error_type())


def test_external_service_errors_are_not_retried():
    assert not is_transient(ExternalServiceError("roster down"))


def test_retries_transient_errors_then_succeeds():
    sleeps: list[float] = []
    policy = RetryPolicy(max_attempts=3, base_delay_ms=10, max_delay_ms=100, sleep=sleeps.append)
    attempts = iter([_operational(), _operational(), "ok"])

    def flaky() -> str:
        result = next(attempts)
        if isinstance(result, Exception):
            raise result
        return result

    assert policy.call(flaky, operation="flaky") == "ok"
    assert sleeps == [0.01, 0.02]


def test_terminal_errors_are_not_retried():
    calls = []
    policy = RetryPolicy(sleep=lambda _: None)

    def missing() -> None:
        calls.append(1)
        raise NotFoundError("gone")

    with pytest.raises(NotFoundError):
        policy.call(missing)
    assert len(calls) == 1


def test_exhaustion_raises_transient_store_error_chained():
    policy = RetryPolicy(max_attempts=2, sleep=lambda _: None)

    def always_locked() -> None:
        raise _operational()

    with pytest.raises(TransientStoreError) as excinfo:
        policy.call(always_locked, operation="always_locked")
    assert isinstance(excinfo.value.__cause__, OperationalError)
