"""Polling loop: continuation, wall-clock timeout and per-cycle recovery."""

import pytest

from remit_engine.exceptions import APIError, NetworkError, PollingTimeoutError
from remit_engine.polling import DEFAULT_POLL_RETRY, PollingConfig, poll


class ScriptedStatus:
    """Returns (or raises) the scripted entries in order; the last one repeats."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        entry = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(entry, BaseException):
            raise entry
        return entry


@pytest.mark.unit
@pytest.mark.asyncio
async def test_polls_until_should_continue_is_false(fake_clock):
    op = ScriptedStatus(["pending", "pending", "confirmed"])
    seen = []
    config = PollingConfig(
        should_continue=lambda status: status == "pending",
        interval=3.0,
        on_poll=lambda status, n: seen.append((status, n)),
    )

    result = await poll(op, config, clock=fake_clock, sleep=fake_clock.sleep)

    assert result == "confirmed"
    assert op.calls == 3
    assert seen == [("pending", 1), ("pending", 2), ("confirmed", 3)]
    assert fake_clock.sleeps == [3.0, 3.0]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_timeout_is_checked_before_the_next_cycle(fake_clock):
    op = ScriptedStatus(["pending"])
    timeouts = []
    config = PollingConfig(
        should_continue=lambda status: True,
        interval=10.0,
        max_duration=5.0,
        on_timeout=lambda: timeouts.append(True),
    )

    with pytest.raises(PollingTimeoutError, match="Polling timed out"):
        await poll(op, config, clock=fake_clock, sleep=fake_clock.sleep)

    assert op.calls == 1
    assert timeouts == [True]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_cycle_does_not_end_polling(fake_clock):
    errors = []
    op = ScriptedStatus([NetworkError(), "pending", "confirmed"])
    config = PollingConfig(
        should_continue=lambda status: status == "pending",
        interval=1.0,
        retry_config={"max_retries": 0},
        on_error=errors.append,
    )

    result = await poll(op, config, clock=fake_clock, sleep=fake_clock.sleep)

    assert result == "confirmed"
    assert op.calls == 3
    assert len(errors) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cycle_override_keeps_the_other_default_fields(fake_clock):
    op = ScriptedStatus([NetworkError(), NetworkError(), NetworkError(), "done"])
    errors = []
    config = PollingConfig(
        should_continue=lambda status: status != "done",
        interval=3.0,
        retry_config={"jitter": False},
        on_error=errors.append,
    )

    result = await poll(op, config, clock=fake_clock, sleep=fake_clock.sleep)

    assert result == "done"
    # First cycle: three attempts (two retries from 0.5s), then the interval
    assert op.calls == 4
    assert len(errors) == 1
    assert fake_clock.sleeps == [0.5, 1.0, 3.0]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_non_retryable_error_propagates(fake_clock):
    op = ScriptedStatus([APIError(404, {"error": "Intent not found"})])
    config = PollingConfig(should_continue=lambda status: True)

    with pytest.raises(APIError) as exc_info:
        await poll(op, config, clock=fake_clock, sleep=fake_clock.sleep)

    assert exc_info.value.status == 404
    assert op.calls == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_raising_from_on_error_aborts(fake_clock):
    class Stop(Exception):
        pass

    def on_error(error):
        raise Stop from error

    op = ScriptedStatus([NetworkError()])
    config = PollingConfig(
        should_continue=lambda status: True,
        retry_config={"max_retries": 0},
        on_error=on_error,
    )

    with pytest.raises(Stop):
        await poll(op, config, clock=fake_clock, sleep=fake_clock.sleep)

    assert op.calls == 1


@pytest.mark.unit
def test_default_cycle_retry_policy():
    assert DEFAULT_POLL_RETRY.max_retries == 2
    assert DEFAULT_POLL_RETRY.initial_delay == 0.5


@pytest.mark.unit
def test_negative_interval_is_rejected():
    with pytest.raises(ValueError):
        PollingConfig(should_continue=lambda _: True, interval=-1)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cycle_predicate_override_alone(fake_clock):
    op = ScriptedStatus([APIError(404), "done"])
    config = PollingConfig(
        should_continue=lambda status: status != "done",
        retry_config={"is_retryable": lambda error: True, "jitter": False},
    )

    result = await poll(op, config, clock=fake_clock, sleep=fake_clock.sleep)

    assert result == "done"
    assert op.calls == 2
    assert fake_clock.sleeps == [0.5]


@pytest.mark.unit
def test_unknown_retry_field_is_rejected():
    with pytest.raises(ValueError, match="max_attempts"):
        PollingConfig(should_continue=lambda _: True, retry_config={"max_attempts": 1})
