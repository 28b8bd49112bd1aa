"""Tests for attach-then-start of interactive containers."""

from __future__ import annotations

import pytest

from clawker.application.attach import AttachOptions, attach_and_start
from clawker.core.errors import ContainerExitError, DaemonError, StageError
from clawker.ports.runtime_client import STDERR, STDOUT
from tests.fakes.fake_collaborators import FakeSocketBridge, FakeTerminal
from tests.fakes.fake_runtime_client import CONTAINER_ID, stdout_frames


def _ops(runtime) -> list[str]:
    return [c[0] for c in runtime.calls if c[0] in ("attach", "start", "resize", "wait")]


class TestAttachThenStart:
    """The stream is attached before start so short-lived output is never lost."""

    def test_short_lived_auto_remove_container(self, runtime):
        runtime.output = stdout_frames(b"hi\n")
        terminal = FakeTerminal(size=(24, 80))

        attach_and_start(
            runtime,
            terminal,
            CONTAINER_ID,
            AttachOptions(tty=True, stdin=True, auto_remove=True),
        )

        ops = _ops(runtime)
        assert ops.index("attach") < ops.index("start")
        resizes = [c[2:] for c in runtime.calls if c[0] == "resize"]
        assert resizes[:2] == [(25, 81), (24, 80)]
        assert bytes(terminal.output) == b"hi\n"
        assert terminal.events == ["raw", "restored"]
        assert ("wait", CONTAINER_ID, "removed") in runtime.calls

    def test_start_precedes_every_resize(self, runtime):
        attach_and_start(runtime, FakeTerminal(), CONTAINER_ID, AttachOptions(tty=True))

        ops = _ops(runtime)
        start = ops.index("start")
        assert all(i > start for i, op in enumerate(ops) if op == "resize")

    def test_wait_uses_next_exit_without_auto_remove(self, runtime):
        attach_and_start(runtime, FakeTerminal(terminal=False), CONTAINER_ID, AttachOptions())

        assert ("wait", CONTAINER_ID, "next-exit") in runtime.calls
        assert not any(c[0] == "resize" for c in runtime.calls)

    def test_non_tty_stderr_goes_to_error_stream(self, runtime):
        runtime.output = [(STDOUT, b"out\n"), (STDERR, b"err\n")]
        terminal = FakeTerminal(terminal=False)

        attach_and_start(runtime, terminal, CONTAINER_ID, AttachOptions())

        assert bytes(terminal.output) == b"out\n"
        assert bytes(terminal.errors) == b"err\n"
        assert terminal.events == []

    def test_resize_watch_is_removed_on_return(self, runtime):
        terminal = FakeTerminal()

        attach_and_start(runtime, terminal, CONTAINER_ID, AttachOptions(tty=True))

        assert terminal.resize_callbacks == []


class TestExitStatus:
    def test_non_zero_exit_is_propagated(self, runtime):
        runtime.exit_code = 3

        with pytest.raises(ContainerExitError) as exc_info:
            attach_and_start(runtime, FakeTerminal(terminal=False), CONTAINER_ID, AttachOptions())

        assert exc_info.value.exit_code == 3

    def test_start_failure_is_wrapped(self, runtime):
        runtime.start_error = DaemonError(user_message="exec format error")
        terminal = FakeTerminal()

        with pytest.raises(StageError, match="starting container: exec format error"):
            attach_and_start(runtime, terminal, CONTAINER_ID, AttachOptions(tty=True))

        assert terminal.events == ["raw", "restored"]
        assert runtime.last_connection is not None
        assert runtime.last_connection.closed


class TestDetach:
    def test_detach_keys_end_the_session_successfully(self, runtime):
        runtime.hold_stream_open = True
        runtime.wait_blocks = True
        terminal = FakeTerminal(input_chunks=[b"ls\n", b"\x10\x11"])

        attach_and_start(
            runtime,
            terminal,
            CONTAINER_ID,
            AttachOptions(tty=True, stdin=True),
            exit_wait_seconds=0.2,
        )

        assert runtime.last_connection.sent == [b"ls\n"]
        assert terminal.events == ["raw", "restored"]

    def test_split_detach_sequence_is_held_back(self, runtime):
        runtime.hold_stream_open = True
        runtime.wait_blocks = True
        terminal = FakeTerminal(input_chunks=[b"a\x10", b"\x11"])

        attach_and_start(
            runtime,
            terminal,
            CONTAINER_ID,
            AttachOptions(tty=True, stdin=True),
            exit_wait_seconds=0.2,
        )

        assert runtime.last_connection.sent == [b"a"]

    def test_stdin_eof_half_closes(self, runtime):
        terminal = FakeTerminal(terminal=False, eof=True)

        attach_and_start(runtime, terminal, CONTAINER_ID, AttachOptions(stdin=True))

        assert runtime.last_connection.write_closed


class TestSocketBridge:
    def test_bridge_started_after_start_and_stopped_on_return(self, runtime):
        bridge = FakeSocketBridge()

        attach_and_start(
            runtime,
            FakeTerminal(terminal=False),
            CONTAINER_ID,
            AttachOptions(forward_gpg=True),
            socket_bridge=bridge,
        )

        assert bridge.ensured == [(CONTAINER_ID, True)]
        assert bridge.stopped == [CONTAINER_ID]

    def test_bridge_failure_is_reported_not_raised(self, runtime):
        warnings: list[str] = []

        attach_and_start(
            runtime,
            FakeTerminal(terminal=False),
            CONTAINER_ID,
            AttachOptions(forward_ssh=True),
            socket_bridge=FakeSocketBridge(fail=True),
            warn=warnings.append,
        )

        assert len(warnings) == 1
        assert "SSH/GPG forwarding unavailable" in warnings[0]
