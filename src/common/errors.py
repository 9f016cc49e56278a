"""Error taxonomy for resolution, storage and installation.

Every error carries the process exit code the entry point should use, so
nothing below ``bale.main`` needs to call ``sys.exit`` itself.
"""

from __future__ import annotations

from typing import Optional

from constants import ExitCodes


class BaleError(Exception):
    """Base exception for bale errors."""

    exit_code = ExitCodes.FILE_ERROR

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint


class ManifestError(BaleError):
    """package.json is missing, malformed or does not contain a requested entry."""


class ResolutionError(BaleError):
    """No published version satisfies a requirement, or the package does not exist."""

    exit_code = ExitCodes.RESOLUTION_ERROR

    def __init__(self, message: str, package_name: Optional[str] = None):
        super().__init__(message)
        self.package_name = package_name


class LockfileMismatchError(BaleError):
    """The lockfile cannot provide what an immutable operation requires."""

    exit_code = ExitCodes.LOCKFILE_ERROR


class NetworkError(BaleError):
    """Registry or tarball fetch failed."""

    exit_code = ExitCodes.CONNECTION_ERROR

    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class StoreError(BaleError):
    """A package could not be downloaded or unpacked into the store."""

    exit_code = ExitCodes.STORE_ERROR

    def __init__(self, package_id: str, message: str):
        super().__init__(f"{package_id}: {message}")
        self.package_id = package_id


class InstallError(BaleError):
    """Placing a package into node_modules failed."""

    exit_code = ExitCodes.INSTALL_ERROR


class ScriptError(BaleError):
    """A lifecycle script exited with a nonzero status."""

    exit_code = ExitCodes.SCRIPT_ERROR

    def __init__(self, script: str, package: str, returncode: int):
        super().__init__(
            f"{script} script for {package} failed with exit code {returncode}"
        )
        self.script = script
        self.package = package
        self.returncode = returncode
