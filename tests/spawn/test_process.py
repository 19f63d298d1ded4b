"""Tests for spawning and closing server processes.

These start real child processes running small Python snippets.
"""

import os
import signal
import sys
from unittest.mock import MagicMock

from mcpz.spawn.process import ProcessCloseResult, merge_env, spawn_process

SLEEPER = "import time\nwhile True:\n    time.sleep(0.1)\n"
SIGINT_IGNORER = (
    "import signal, sys, time\n"
    "signal.signal(signal.SIGINT, signal.SIG_IGN)\n"
    "print('ready', flush=True)\n"
    "while True:\n"
    "    time.sleep(0.1)\n"
)


class TestMergeEnv:
    def test_overlay_wins_and_none_values_dropped(self):
        # Act
        env = merge_env({"B": "override", "C": None}, base={"A": "1", "B": "2", "C": "3"})

        # Assert
        assert env == {"A": "1", "B": "override"}

    def test_defaults_to_os_environ(self):
        env = merge_env({"MCPZ_TEST_VAR": "x"})
        assert env["MCPZ_TEST_VAR"] == "x"
        assert env.get("PATH") == os.environ.get("PATH")


class TestSpawnProcess:
    async def test_records_resolved_config(self, tmp_path):
        # Act
        handle = await spawn_process(
            "sleeper",
            sys.executable,
            ["-c", SLEEPER],
            cwd=str(tmp_path),
            env={"EXTRA": "1"},
            stdio="pipe",
        )

        try:
            # Assert
            assert handle.name == "sleeper"
            assert handle.config.cwd == str(tmp_path)
            assert handle.config.env["EXTRA"] == "1"
            assert handle.config.args == ["-c", SLEEPER]
            assert handle.process.stdin is not None
            assert handle.process.stdout is not None
            assert not handle.has_exited
        finally:
            await handle.close()

    async def test_inherit_mode_has_no_pipes(self, tmp_path):
        handle = await spawn_process(
            "sleeper", sys.executable, ["-c", SLEEPER], cwd=str(tmp_path)
        )
        try:
            assert handle.process.stdin is None
            assert handle.process.stdout is None
        finally:
            await handle.close()


class TestServerProcessClose:
    async def test_graceful_close(self, tmp_path):
        # Arrange
        handle = await spawn_process(
            "sleeper", sys.executable, ["-c", SLEEPER], cwd=str(tmp_path)
        )

        # Act
        result = await handle.close(timeout=5.0)

        # Assert
        assert result == ProcessCloseResult(timed_out=False, killed=False)
        assert handle.has_exited

    async def test_second_close_returns_immediately(self, tmp_path):
        # Arrange
        handle = await spawn_process(
            "sleeper", sys.executable, ["-c", SLEEPER], cwd=str(tmp_path)
        )
        await handle.close(timeout=5.0)

        # Act
        second = await handle.close()

        # Assert
        assert second == ProcessCloseResult(timed_out=False, killed=False)

    async def test_kills_process_ignoring_signal(self, tmp_path):
        # Arrange
        handle = await spawn_process(
            "stubborn",
            sys.executable,
            ["-c", SIGINT_IGNORER],
            cwd=str(tmp_path),
            stdio="pipe",
        )
        assert (await handle.process.stdout.readline()).strip() == b"ready"

        # Act
        result = await handle.close(signal.SIGINT, timeout=0.3)

        # Assert
        assert result == ProcessCloseResult(timed_out=True, killed=True)
        assert handle.has_exited

    async def test_undeliverable_signal_falls_back_to_kill(self, tmp_path):
        # Arrange
        handle = await spawn_process(
            "windows-like", sys.executable, ["-c", SLEEPER], cwd=str(tmp_path), stdio="pipe"
        )
        handle.process.send_signal = MagicMock(side_effect=ValueError("Unsupported signal: 2"))

        # Act
        result = await handle.close(signal.SIGINT, timeout=5)

        # Assert
        assert result == ProcessCloseResult(timed_out=False, killed=True)
        assert handle.has_exited
