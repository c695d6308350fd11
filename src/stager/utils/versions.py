"""Version string helpers used by the policy rules.

Versions such as ``9.8.0``, ``9.8.0-rc2``, ``9.8.0-alpha1`` and ``9.8.0-dev``
are parsed with ``packaging``; branch snapshots such as ``9.8.x-dev`` are not
valid PEP 440 and parse to None.
"""

from typing import Optional

from packaging.version import InvalidVersion, Version


def parse_version(version: Optional[str]) -> Optional[Version]:
    if not version:
        return None
    try:
        return Version(version)
    except InvalidVersion:
        return None


def is_dev_snapshot(version: str) -> bool:
    """True for ``9.8.0-dev`` and ``9.8.x-dev`` style versions."""
    return version.lower().endswith("-dev")


def get_major(version: str) -> Optional[int]:
    parsed = parse_version(version)
    if parsed is not None:
        return parsed.major
    head = version.split(".", 1)[0]
    return int(head) if head.isdigit() else None


def get_minor(version: str) -> Optional[int]:
    parsed = parse_version(version)
    if parsed is not None:
        return parsed.minor
    parts = version.split(".")
    if len(parts) > 1 and parts[1].isdigit():
        return int(parts[1])
    return None


def get_branch(version: str) -> Optional[str]:
    """Return the ``major.minor.`` prefix, e.g. ``9.8.`` for ``9.8.2``."""
    major, minor = get_major(version), get_minor(version)
    if major is None or minor is None:
        return None
    return f"{major}.{minor}."


def is_stable(version: str) -> bool:
    """No alpha, beta, rc or dev qualifier."""
    if is_dev_snapshot(version):
        return False
    parsed = parse_version(version)
    return parsed is not None and not parsed.is_prerelease


def is_release_candidate(version: str) -> bool:
    parsed = parse_version(version)
    return parsed is not None and parsed.pre is not None and parsed.pre[0] == "rc"


def is_lower(target: str, installed: str) -> bool:
    """True when target is provably lower than installed."""
    target_parsed, installed_parsed = parse_version(target), parse_version(installed)
    if target_parsed is None or installed_parsed is None:
        return False
    return target_parsed < installed_parsed


def same_minor(a: str, b: str) -> bool:
    return get_major(a) == get_major(b) and get_minor(a) == get_minor(b)
