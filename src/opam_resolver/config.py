"""Runtime configuration: defaults, optional YAML file, environment overrides."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from opam_resolver.constants import Constants, default_repository_url

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _default_cache_folder() -> str:
    return os.path.join(os.path.expanduser("~"), ".cache", "opam-resolver")


@dataclass
class OpamConfig:
    """Where to mirror metadata, where to cache packages, and how to treat the network."""

    cache_folder: str = ""
    repository_url: str = ""
    override_url: str = Constants.REPOSITORY_URL_OVERRIDE
    urls_url: str = Constants.ARCHIVE_INDEX_URL
    override_checkout: Optional[str] = None
    branch: str = Constants.DEFAULT_BRANCH
    offline: bool = False
    prefer_offline: bool = False
    offline_mirror: Optional[str] = None
    temp_folder: Optional[str] = None
    request_timeout: int = Constants.REQUEST_TIMEOUT

    def __post_init__(self) -> None:
        if not self.cache_folder:
            self.cache_folder = _default_cache_folder()
        if not self.repository_url:
            self.repository_url = default_repository_url()

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        config_path: Optional[str] = None,
    ) -> "OpamConfig":
        """Build a config from defaults, an optional YAML file and the environment.

        Precedence, lowest first: built-in defaults, YAML file
        (``config_path`` or $OPAM_RESOLVER_CONFIG), environment variables.
        """
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        path = config_path or env.get(Constants.ENV_CONFIG_FILE)
        if path:
            values.update(load_config_file(path))

        mapping = {
            Constants.ENV_REPOSITORY: "repository_url",
            Constants.ENV_REPOSITORY_OVERRIDE: "override_url",
            Constants.ENV_REPOSITORY_URLS: "urls_url",
            Constants.ENV_REPOSITORY_OVERRIDE_CHECKOUT: "override_checkout",
            Constants.ENV_CACHE_FOLDER: "cache_folder",
            Constants.ENV_OFFLINE_MIRROR: "offline_mirror",
        }
        for var, key in mapping.items():
            value = env.get(var)
            if value:
                values[key] = value
        for var, key in ((Constants.ENV_OFFLINE, "offline"),
                         (Constants.ENV_PREFER_OFFLINE, "prefer_offline")):
            value = env.get(var)
            if value is not None and value != "":
                values[key] = value.strip().lower() in _TRUE_VALUES

        return cls(**values)

    @property
    def repository_checkout_path(self) -> str:
        return os.path.join(self.cache_folder, Constants.REPOSITORY_CHECKOUT_DIR)

    @property
    def override_checkout_path(self) -> str:
        if self.override_checkout:
            return self.override_checkout
        return os.path.join(self.cache_folder, Constants.OVERRIDE_CHECKOUT_DIR)

    @property
    def urls_cache_path(self) -> str:
        return os.path.join(self.cache_folder, Constants.URLS_CACHE_FILE)

    def package_cache_path(self, cache_key: str) -> str:
        return os.path.join(self.cache_folder, cache_key)

    def offline_mirror_path(self, filename: str) -> Optional[str]:
        if not self.offline_mirror:
            return None
        return os.path.join(self.offline_mirror, filename)

    def temp_dir(self) -> str:
        return self.temp_folder or tempfile.gettempdir()


def load_config_file(path: str) -> Dict[str, Any]:
    """Load known config keys from a YAML file; unknown keys are ignored."""
    if not os.path.isfile(path):
        logger.warning("Config file not found: %s", path)
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        logger.warning("Config file %s does not contain a mapping; ignoring", path)
        return {}
    section = data.get("opam", data)
    known = {f.name for f in fields(OpamConfig)}
    path_keys = {"cache_folder", "offline_mirror", "override_checkout", "temp_folder"}
    values = {}
    for key, value in section.items():
        norm = str(key).replace("-", "_")
        if norm not in known:
            logger.debug("Ignoring unknown config key %s in %s", key, path)
            continue
        if norm in path_keys and value:
            value = str(Path(value).expanduser())
        values[norm] = value
    return values
