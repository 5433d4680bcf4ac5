import time

import pytest

from cloud_burster.errors import OperationCancelled
from cloud_burster.utils.context import RunContext


def test_background_context_is_never_cancelled():
    ctx = RunContext.background()
    assert ctx.cancelled is False
    assert ctx.remaining() is None
    ctx.check()


def test_cancel_is_shared_with_bound_children():
    ctx = RunContext.background()
    child = ctx.bind(hostname="cn1")
    ctx.cancel()

    assert child.cancelled is True
    with pytest.raises(OperationCancelled, match="cancelled"):
        child.check()


def test_bound_child_logs_with_extra():
    ctx = RunContext.background()
    child = ctx.bind(hostname="cn1")
    assert child.log is not ctx.log


def test_deadline():
    ctx = RunContext.with_timeout(0.05)
    assert ctx.remaining() <= 0.05
    time.sleep(0.06)
    assert ctx.cancelled is True
    assert ctx.remaining() == 0.0
    with pytest.raises(OperationCancelled, match="deadline"):
        ctx.check()


def test_with_timeout_none_has_no_deadline():
    assert RunContext.with_timeout(None).deadline is None


def test_wait_returns_early_on_deadline():
    ctx = RunContext.with_timeout(0.05)
    start = time.monotonic()
    assert ctx.wait(10) is True
    assert time.monotonic() - start < 5


def test_wait_full_delay_when_not_cancelled():
    ctx = RunContext.background()
    assert ctx.wait(0.01) is False
