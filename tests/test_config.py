"""Tests for configuration layering."""

import os

from opam_resolver.config import OpamConfig, load_config_file
from opam_resolver.constants import Constants


class TestOpamConfig:
    """Defaults, YAML file and environment precedence."""

    def test_defaults(self):
        config = OpamConfig.from_env({})
        assert config.override_url == Constants.REPOSITORY_URL_OVERRIDE
        assert config.urls_url == Constants.ARCHIVE_INDEX_URL
        assert config.repository_url in (
            Constants.REPOSITORY_URL_OPAM,
            Constants.REPOSITORY_URL_OPAM_WINDOWS,
        )
        assert config.cache_folder.endswith("opam-resolver")
        assert not config.offline
        assert config.offline_mirror_path("x.tgz") is None

    def test_environment_overrides(self, tmp_path):
        env = {
            "ESY_OPAM_REPOSITORY": "https://example.com/repo.git",
            "ESY_OPAM_REPOSITORY_OVERRIDE": "https://example.com/override.git",
            "ESY_OPAM_REPOSITORY_URLS": "https://example.com/urls.txt",
            "ESY_OPAM_REPOSITORY_OVERRIDE_CHECKOUT": str(tmp_path / "override"),
            "OPAM_RESOLVER_CACHE": str(tmp_path / "cache"),
            "OPAM_RESOLVER_OFFLINE": "yes",
            "OPAM_RESOLVER_PREFER_OFFLINE": "0",
        }
        config = OpamConfig.from_env(env)
        assert config.repository_url == "https://example.com/repo.git"
        assert config.override_url == "https://example.com/override.git"
        assert config.urls_url == "https://example.com/urls.txt"
        assert config.override_checkout_path == str(tmp_path / "override")
        assert config.offline is True
        assert config.prefer_offline is False
        assert config.repository_checkout_path == os.path.join(str(tmp_path / "cache"), "opam-repository")
        assert config.urls_cache_path == os.path.join(str(tmp_path / "cache"), "opam-urls")

    def test_yaml_file_below_environment(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(
            "opam:\n"
            "  cache-folder: ~/somewhere\n"
            "  branch: main\n"
            "  offline_mirror: /mirror\n"
            "  unknown_key: 1\n"
        )
        config = OpamConfig.from_env(
            {"OPAM_RESOLVER_CONFIG": str(path), "OPAM_RESOLVER_OFFLINE_MIRROR": "/other"}
        )
        assert config.branch == "main"
        assert config.cache_folder == os.path.join(os.path.expanduser("~"), "somewhere")
        assert config.offline_mirror == "/other"
        assert config.offline_mirror_path("a.tgz") == os.path.join("/other", "a.tgz")

    def test_explicit_config_path(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("prefer_offline: true\n")
        config = OpamConfig.from_env({}, config_path=str(path))
        assert config.prefer_offline is True

    def test_missing_or_malformed_file_is_ignored(self, tmp_path):
        assert load_config_file(str(tmp_path / "absent.yml")) == {}
        path = tmp_path / "list.yml"
        path.write_text("- a\n- b\n")
        assert load_config_file(str(path)) == {}

    def test_package_cache_and_temp(self, tmp_path):
        config = OpamConfig(cache_folder=str(tmp_path), temp_folder=str(tmp_path / "tmp"))
        assert config.package_cache_path("opam-foo-1.0.0-abc") == os.path.join(str(tmp_path), "opam-foo-1.0.0-abc")
        assert config.temp_dir() == str(tmp_path / "tmp")
