"""Process-wide handle on the synced metadata mirror and its caches."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from opam_resolver.common.http_client import HttpClient
from opam_resolver.common.logging_utils import Timer, extra_context
from opam_resolver.common.process import CommandRunner
from opam_resolver.common.singleflight import SingleFlight
from opam_resolver.config import OpamConfig
from opam_resolver.repository import override
from opam_resolver.repository.git import RepositorySync
from opam_resolver.repository.override import OverrideStore
from opam_resolver.repository.urls import URLIndex, URLIndexCache

logger = logging.getLogger(__name__)


@dataclass
class RepositoryCheckout:
    """A fully-synced local mirror plus the override store and archive index."""

    checkout_path: str
    overrides: OverrideStore
    url_index: URLIndex


async def _sync_repository(config: OpamConfig, sync: RepositorySync) -> str:
    checkout_path = config.repository_checkout_path

    def on_clone() -> None:
        logger.info("Cloning opam repository (this might take a while)...")

    def on_update() -> None:
        logger.info("Updating opam repository checkout (this might take a while)...")

    await sync.sync(
        config.repository_url,
        checkout_path,
        branch=config.branch,
        on_clone=on_clone,
        on_update=on_update,
    )
    return checkout_path


async def open_checkout(
    config: OpamConfig,
    runner: Optional[CommandRunner] = None,
    http: Optional[HttpClient] = None,
) -> RepositoryCheckout:
    """Sync the mirror, load overrides and fetch the archive index concurrently."""
    sync = RepositorySync(runner=runner, offline=config.offline, prefer_offline=config.prefer_offline)
    client = http or HttpClient(timeout=config.request_timeout)
    index_cache = URLIndexCache(
        client,
        index_url=config.urls_url,
        offline=config.offline,
        prefer_offline=config.prefer_offline,
    )
    try:
        with Timer() as t:
            checkout_path, overrides, url_index = await asyncio.gather(
                _sync_repository(config, sync),
                override.init(config, sync),
                index_cache.fetch_index(config.urls_cache_path),
            )
    finally:
        if http is None:
            await client.stop()
    logger.debug(
        "Repository checkout ready",
        extra=extra_context(
            event="checkout_ready",
            component="repository",
            outcome="success",
            duration_ms=t.duration_ms(),
            target=checkout_path,
        ),
    )
    return RepositoryCheckout(checkout_path=checkout_path, overrides=overrides, url_index=url_index)


_checkout: SingleFlight[RepositoryCheckout] = SingleFlight()


async def init(
    config: OpamConfig,
    runner: Optional[CommandRunner] = None,
    http: Optional[HttpClient] = None,
) -> RepositoryCheckout:
    """Return the process-wide checkout, initializing it on first use."""
    return await _checkout.get(lambda: open_checkout(config, runner, http))


def reset() -> None:
    """Forget the shared checkout and override store."""
    _checkout.reset()
    override.reset()
