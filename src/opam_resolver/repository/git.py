"""Keep a shallow local mirror of a git repository in sync.

Offline policy:

    checkout missing          offline        -> OFFLINE error
                              online         -> shallow clone
    checkout present          prefer_offline/offline, not forced -> use as is
                              offline, forced                  -> OFFLINE error
                              otherwise -> compare local tip with remote tip,
                                           pull only when they differ
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from opam_resolver.common import fs
from opam_resolver.common.logging_utils import extra_context, safe_url
from opam_resolver.common.process import CommandRunner, default_runner
from opam_resolver.constants import Constants
from opam_resolver.errors import offline_error

logger = logging.getLogger(__name__)


class RepositorySync:
    """Clone-or-update a git remote into a local checkout."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        depth: int = Constants.CLONE_DEPTH,
        offline: bool = False,
        prefer_offline: bool = False,
    ) -> None:
        self.runner = runner or default_runner()
        self.depth = depth
        self.offline = offline
        self.prefer_offline = prefer_offline

    async def sync(
        self,
        remote_url: str,
        local_path: str,
        branch: str = Constants.DEFAULT_BRANCH,
        force_update: bool = False,
        prefer_offline: Optional[bool] = None,
        on_clone: Optional[Callable[[], None]] = None,
        on_update: Optional[Callable[[], None]] = None,
    ) -> None:
        """Make ``local_path`` a checkout of ``branch`` of ``remote_url``.

        Args:
            remote_url: Git remote to mirror.
            local_path: Where the checkout lives.
            branch: Branch to pin the checkout to.
            force_update: Always consult the remote, even when offline is preferred.
            prefer_offline: Per-call override of the instance setting.
            on_clone: Called right before a fresh clone starts.
            on_update: Called right before an existing checkout is pulled.

        Raises:
            OpamResolverError: OFFLINE when the network is needed but
                disallowed, PROCESS_EXECUTION when git fails.
        """
        prefer = self.prefer_offline if prefer_offline is None else prefer_offline

        if not await fs.exists(local_path):
            if self.offline:
                raise offline_error(f"clone {safe_url(remote_url)}")
            if on_clone is not None:
                on_clone()
            await self.clone(remote_url, local_path, branch)
            return

        current = await self.read_local_branch(local_path)
        if current != branch:
            logger.info(
                "Checkout %s is on branch %s instead of %s; recloning",
                local_path,
                current,
                branch,
            )
            await fs.rmtree(local_path, ignore_errors=False)
            await self.sync(
                remote_url,
                local_path,
                branch=branch,
                force_update=force_update,
                prefer_offline=prefer_offline,
                on_clone=on_clone,
                on_update=on_update,
            )
            return

        if (prefer or self.offline) and not force_update:
            logger.debug("Using existing checkout %s without updating", local_path)
            return
        if self.offline:
            raise offline_error(f"update {safe_url(remote_url)}")

        local_commit = await self.read_local_commit(local_path)
        remote_commit = await self.read_remote_commit(remote_url, branch)
        if local_commit == remote_commit:
            logger.debug(
                "Checkout up to date",
                extra=extra_context(
                    event="git_sync",
                    component="repository",
                    outcome="unchanged",
                    target=safe_url(remote_url),
                ),
            )
            return
        if on_update is not None:
            on_update()
        await self.runner.run(
            ["git", "pull", "-f", "--depth", str(self.depth), remote_url, branch],
            cwd=local_path,
        )

    async def clone(self, remote_url: str, local_path: str, branch: str) -> None:
        await self.runner.run(
            [
                "git",
                "clone",
                "--branch",
                branch,
                "--depth",
                str(self.depth),
                remote_url,
                local_path,
            ]
        )

    async def read_local_branch(self, local_path: str) -> str:
        out = await self.runner.run(["git", "rev-parse", "--abbrev-ref", "HEAD"], cwd=local_path)
        return out.strip()

    async def read_local_commit(self, local_path: str) -> str:
        out = await self.runner.run(["git", "rev-parse", "HEAD"], cwd=local_path)
        return out.strip()

    async def read_remote_commit(self, remote_url: str, branch: str) -> str:
        """Ask the remote for its branch tip without fetching any objects."""
        out = await self.runner.run(["git", "ls-remote", remote_url, f"refs/heads/{branch}"])
        commit, _, _ = out.partition("\t")
        return commit.strip()
