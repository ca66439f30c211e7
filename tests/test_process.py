"""Tests for the subprocess runner."""

import asyncio
import sys

import pytest

from opam_resolver.common.process import AsyncCommandRunner, default_runner
from opam_resolver.errors import ErrorKind, OpamResolverError


class TestAsyncCommandRunner:
    """Real subprocesses through the current interpreter."""

    def test_returns_stdout(self, tmp_path):
        runner = AsyncCommandRunner()
        out = asyncio.run(
            runner.run([sys.executable, "-c", "import os; print(os.getcwd())"], cwd=str(tmp_path))
        )
        assert out.strip() == str(tmp_path.resolve())

    def test_non_zero_exit_carries_stderr(self):
        runner = AsyncCommandRunner()
        script = "import sys; sys.stderr.write('broken'); sys.exit(3)"
        with pytest.raises(OpamResolverError) as excinfo:
            asyncio.run(runner.run([sys.executable, "-c", script]))
        err = excinfo.value
        assert err.kind is ErrorKind.PROCESS_EXECUTION
        assert err.code == 3
        assert err.stderr == "broken"
        assert "broken" in str(err)

    def test_missing_binary(self):
        runner = AsyncCommandRunner()
        with pytest.raises(OpamResolverError) as excinfo:
            asyncio.run(runner.run(["definitely-not-a-real-binary-xyz"]))
        assert excinfo.value.kind is ErrorKind.PROCESS_EXECUTION
        assert excinfo.value.process == "definitely-not-a-real-binary-xyz"

    def test_default_runner_is_shared(self):
        assert default_runner() is default_runner()
