"""Constants used in the project."""

from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    RESOLUTION_ERROR = 3
    LOCKFILE_ERROR = 4
    STORE_ERROR = 5
    INSTALL_ERROR = 6
    SCRIPT_ERROR = 7


class LifecycleScript(Enum):
    """Install-time scripts, in the order they run for a package.

    Args:
        Enum (string): Script key in the package manifest.
    """

    PREINSTALL = "preinstall"
    INSTALL = "install"
    POSTINSTALL = "postinstall"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    REGISTRY_URL_NPM = "https://registry.npmjs.org/"
    NPM_METADATA_ACCEPT = (
        "application/vnd.npm.install-v1+json; q=1.0, application/json; q=0.8, */*"
    )
    USER_AGENT = "bale/0.1.0"

    PACKAGE_JSON_FILE = "package.json"
    LOCKFILE = "bale.lock"
    LOCKFILE_VERSION = 1
    CONFIG_FILES = ["bale.yml", "bale.yaml", "bale.json"]

    PRIVATE_DIR = ".bale"
    STORE_DIR = ".bale/store"
    NODE_MODULES = "node_modules"
    BIN_DIR = "node_modules/.bin"
    PLAN_FILE = "node_modules/.bale/plan.json"
    COMPLETE_MARKER = "_complete"
    INSTALL_MARKER_PREFIX = ".installed!"

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for metadata requests and connecting
    DOWNLOAD_READ_TIMEOUT = 30  # Longest stall in seconds between tarball chunks
    CLIENT_LIMIT = 32  # Simultaneous tarball downloads
    CONNECTION_LIMIT = 64
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    DOWNLOAD_CHUNK_SIZE = 64 * 1024
    SPOOL_MAX_BYTES = 8 * 1024 * 1024
