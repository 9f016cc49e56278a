"""Token parsing utilities for package specifiers given on the command line."""

from typing import Optional, Tuple

from .models import PackageSpecifier


def tokenize_rightmost_at(s: str) -> Tuple[str, Optional[str]]:
    """Return (name, requirement or None) using the rightmost-@ rule.

    A leading ``@`` belongs to a scoped name (``@scope/pkg``), so it never
    starts the requirement.
    """
    s = s.strip()
    at = s.rfind('@')
    if at <= 0:
        return s, None
    name = s[:at].strip()
    requirement = s[at + 1:].strip()
    return name, requirement or None


def parse_cli_token(token: str) -> Tuple[str, Optional[str]]:
    """Parse an ``add`` argument such as ``left-pad``, ``left-pad@^1`` or ``@types/node@18``."""
    name, requirement = tokenize_rightmost_at(token)
    if not name:
        raise ValueError(f"Invalid package token: {token!r}")
    return name, requirement


def parse_manifest_entry(name: str, raw_spec: Optional[str]) -> PackageSpecifier:
    """Construct a PackageSpecifier from a package.json dependency entry."""
    requirement = "" if raw_spec is None else str(raw_spec).strip()
    return PackageSpecifier(name=name.strip(), requirement=requirement)
