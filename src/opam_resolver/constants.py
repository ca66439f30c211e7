"""Constants used in the project."""

import platform


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration defaults; not intended to provide behavior.
    """

    OPAM_SCOPE = "opam"

    REPOSITORY_URL_OPAM = "https://github.com/ocaml/opam-repository.git"
    REPOSITORY_URL_OPAM_WINDOWS = "https://github.com/fdopen/opam-repository-mingw.git"
    REPOSITORY_URL_OVERRIDE = "https://github.com/esy-ocaml/esy-opam-override.git"
    ARCHIVE_INDEX_URL = "https://opam.ocaml.org/urls.txt"
    ARCHIVE_BASE_URL = "https://opam.ocaml.org/archives/"

    DEFAULT_BRANCH = "master"
    CLONE_DEPTH = 10
    MATCH_ALL_VERSIONS = "*"
    PEER_TOOLCHAIN = "ocaml"

    # Cache layout under the cache folder
    REPOSITORY_CHECKOUT_DIR = "opam-repository"
    OVERRIDE_CHECKOUT_DIR = "esy-opam-override"
    URLS_CACHE_FILE = "opam-urls"
    PACKAGES_DIR = "packages"
    FILES_DIR = "files"
    OPAM_FILE = "opam"
    URL_FILE = "url"
    OVERRIDE_YAML_FILE = "package.yaml"
    OVERRIDE_JSON_FILE = "package.json"
    PACKAGE_DESCRIPTOR_FILE = "package.json"
    TARBALL_FILENAME = ".opam-tarball.tgz"
    TARBALL_PREFIX = "package"
    DOWNLOAD_FILENAME = "opam-tarball"

    # Environment variables
    ENV_REPOSITORY = "ESY_OPAM_REPOSITORY"
    ENV_REPOSITORY_OVERRIDE = "ESY_OPAM_REPOSITORY_OVERRIDE"
    ENV_REPOSITORY_URLS = "ESY_OPAM_REPOSITORY_URLS"
    ENV_REPOSITORY_OVERRIDE_CHECKOUT = "ESY_OPAM_REPOSITORY_OVERRIDE_CHECKOUT"
    ENV_CACHE_FOLDER = "OPAM_RESOLVER_CACHE"
    ENV_OFFLINE = "OPAM_RESOLVER_OFFLINE"
    ENV_PREFER_OFFLINE = "OPAM_RESOLVER_PREFER_OFFLINE"
    ENV_OFFLINE_MIRROR = "OPAM_RESOLVER_OFFLINE_MIRROR"
    ENV_CONFIG_FILE = "OPAM_RESOLVER_CONFIG"
    ENV_LOG_LEVEL = "OPAM_RESOLVER_LOG_LEVEL"

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    DOWNLOAD_CHUNK_SIZE = 64 * 1024
    USER_AGENT = "opam-resolver/0.1"

    DIR_MODE = 0o755
    FILE_MODE = 0o644


def default_repository_url() -> str:
    """Return the metadata repository used when nothing is configured."""
    if platform.system() == "Windows":
        return Constants.REPOSITORY_URL_OPAM_WINDOWS
    return Constants.REPOSITORY_URL_OPAM
