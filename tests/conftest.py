"""Fixtures shared by the test modules."""

import pytest

from opam_resolver.config import OpamConfig
from opam_resolver.repository import checkout


@pytest.fixture(autouse=True)
def reset_singletons():
    checkout.reset()
    yield
    checkout.reset()


@pytest.fixture
def config(tmp_path):
    return OpamConfig(
        cache_folder=str(tmp_path / "cache"),
        temp_folder=str(tmp_path / "tmp"),
        repository_url="https://example.com/opam-repository.git",
        override_url="https://example.com/esy-opam-override.git",
        urls_url="https://example.com/urls.txt",
    )
