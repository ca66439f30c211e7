"""Subprocess execution primitive.

The resolver only needs ``run(args, cwd)``; the ``CommandRunner`` protocol
lets tests inject a fake runner instead of patching asyncio.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol, Sequence

from opam_resolver.common.logging_utils import Timer, extra_context, is_debug_enabled
from opam_resolver.errors import process_failed

logger = logging.getLogger(__name__)


class CommandRunner(Protocol):
    """Anything able to run a command and return its stdout."""

    async def run(self, args: Sequence[str], cwd: Optional[str] = None) -> str:
        ...


class AsyncCommandRunner:
    """Default runner backed by ``asyncio.create_subprocess_exec``."""

    async def run(self, args: Sequence[str], cwd: Optional[str] = None) -> str:
        """Run ``args`` and return decoded stdout.

        Raises:
            OpamResolverError: kind PROCESS_EXECUTION on spawn failure or a
                non-zero exit, with the captured stderr attached.
        """
        argv = [str(a) for a in args]
        if is_debug_enabled(logger):
            logger.debug(
                "Spawning process",
                extra=extra_context(
                    event="process_spawn",
                    component="process",
                    command=" ".join(argv),
                    cwd=cwd,
                ),
            )
        with Timer() as timer:
            try:
                proc = await asyncio.create_subprocess_exec(
                    *argv,
                    cwd=cwd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                raise process_failed(argv, None, str(exc)) from exc
            stdout, stderr = await proc.communicate()

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            logger.debug(
                "Process failed",
                extra=extra_context(
                    event="process_exit",
                    component="process",
                    outcome="failure",
                    code=proc.returncode,
                    duration_ms=timer.duration_ms(),
                ),
            )
            raise process_failed(argv, proc.returncode, err)
        return out


_default_runner: Optional[AsyncCommandRunner] = None


def default_runner() -> AsyncCommandRunner:
    global _default_runner  # pylint: disable=global-statement
    if _default_runner is None:
        _default_runner = AsyncCommandRunner()
    return _default_runner
