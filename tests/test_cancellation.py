"""Tests for the cooperative stop flag."""

from __future__ import annotations

from codesandbox.cancellation import CancellationToken


def test_consuming_read_clears_the_flag():
    token = CancellationToken()
    token.request_stop()
    assert token.should_stop(True) is True
    assert token.should_stop(True) is False


def test_plain_read_keeps_the_flag():
    token = CancellationToken()
    token.request_stop()
    assert token.should_stop(False) is True
    assert token.should_stop() is True
    assert token(True) is True
    assert token() is False


def test_reset():
    token = CancellationToken()
    token.request_stop()
    token.reset()
    assert token.should_stop() is False


def test_listeners_are_called_until_removed():
    token = CancellationToken()
    calls = []
    remove = token.on_stop(lambda: calls.append("stop"))
    token.request_stop()
    remove()
    token.request_stop()
    assert calls == ["stop"]
    # Removing twice is harmless.
    remove()


def test_failing_listener_does_not_block_others(caplog):
    token = CancellationToken()
    calls = []

    def broken() -> None:
        raise RuntimeError("boom")

    token.on_stop(broken)
    token.on_stop(lambda: calls.append("ok"))
    token.request_stop()
    assert calls == ["ok"]
    assert token.should_stop()
    assert "Stop listener" in caplog.text
