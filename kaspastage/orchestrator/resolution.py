"""Profile set validation: cycles, conflicts, prerequisites and fallbacks.

Validation fails fast on the first problem found, checking in the order
unknown profile, circular dependency, conflict, missing prerequisite. All
functions here are pure and safe to call repeatedly.
"""

import logging
from typing import Iterable

from ..errors import (
    CircularDependency,
    PrerequisiteNotMet,
    ProfileConflict,
    ProfileInUse,
    ProfileNotInstalled,
)
from .models import FallbackStrategy, Resolution
from .registry import ProfileRegistry

_logging = logging.getLogger(__name__)

_WHITE, _GREY, _BLACK = 0, 1, 2


def _dedupe(profile_ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for profile_id in profile_ids:
        if profile_id not in seen:
            seen.add(profile_id)
            result.append(profile_id)
    return result


def expand_requires(registry: ProfileRegistry, profile_ids: list[str]) -> list[str]:
    """Return ``profile_ids`` plus everything they transitively require.

    Required profiles come before the profiles that require them.

    Raises:
        CircularDependency: If a profile is reachable from itself via ``requires``
    """
    color: dict[str, int] = {}
    path: list[str] = []
    order: list[str] = []

    def visit(profile_id: str) -> None:
        state = color.get(profile_id, _WHITE)
        if state == _BLACK:
            return
        if state == _GREY:
            start = path.index(profile_id)
            raise CircularDependency(path[start:] + [profile_id])

        color[profile_id] = _GREY
        path.append(profile_id)
        for required in registry.get(profile_id).requires:
            visit(required)
        path.pop()
        color[profile_id] = _BLACK
        order.append(profile_id)

    for profile_id in profile_ids:
        visit(profile_id)
    return order


def find_conflict(registry: ProfileRegistry, profile_ids: list[str]) -> tuple[str, str] | None:
    """Return the first conflicting pair, checking declarations in both directions."""
    for i, first in enumerate(profile_ids):
        first_profile = registry.get(first)
        for second in profile_ids[i + 1:]:
            if second in first_profile.conflicts or first in registry.get(second).conflicts:
                return first, second
    return None


def attach_fallbacks(
    registry: ProfileRegistry, profile_ids: list[str]
) -> dict[str, FallbackStrategy]:
    fallbacks = {}
    for profile_id in profile_ids:
        profile = registry.get(profile_id)
        if profile.optional_dependencies and profile.fallback is not None:
            fallbacks[profile_id] = profile.fallback
    return fallbacks


def resolve_profiles(registry: ProfileRegistry, profile_ids: Iterable[str]) -> Resolution:
    """Validate a candidate profile set and expand it with required profiles.

    Raises:
        UnknownProfile: If any ID is not in the registry
        CircularDependency: If the requires graph has a cycle
        ProfileConflict: If two profiles in the set conflict
        PrerequisiteNotMet: If a profile's prerequisite group has no member present
    """
    requested = _dedupe(profile_ids)
    for profile_id in requested:
        registry.get(profile_id)

    expanded = expand_requires(registry, requested)

    conflict = find_conflict(registry, expanded)
    if conflict is not None:
        raise ProfileConflict(*conflict)

    present = set(expanded)
    for profile_id in expanded:
        group = registry.get(profile_id).prerequisites
        if group and not present.intersection(group):
            raise PrerequisiteNotMet(profile_id, list(group))

    fallbacks = attach_fallbacks(registry, expanded)
    resolution = Resolution(requested=requested, profiles=expanded, fallbacks=fallbacks)
    if resolution.added:
        _logging.debug(f"Expanded selection with required profiles: {resolution.added}")
    return resolution


def hard_dependents(
    registry: ProfileRegistry, profile_id: str, profile_ids: Iterable[str]
) -> list[str]:
    """Profiles in ``profile_ids`` that cannot run without ``profile_id``.

    A profile hard-depends on another when it requires it (directly or
    transitively) or when it is the only present member of its prerequisite group.
    """
    members = list(profile_ids)
    present = set(members)
    dependents = []
    for other_id in members:
        if other_id == profile_id:
            continue
        other = registry.get(other_id)
        if profile_id in expand_requires(registry, list(other.requires)):
            dependents.append(other_id)
            continue
        if profile_id in other.prerequisites:
            satisfied_by = present.intersection(other.prerequisites)
            if satisfied_by == {profile_id}:
                dependents.append(other_id)
    return dependents


def validate_removal(
    registry: ProfileRegistry, installed: Iterable[str], profile_id: str
) -> Resolution:
    """Check that ``profile_id`` can be removed from an installation.

    Returns the resolution of the remaining profile set.

    Raises:
        ProfileNotInstalled: If the profile is not part of the installation
        ProfileInUse: If a remaining profile transitively requires it
        PrerequisiteNotMet: If removal leaves a prerequisite group empty
    """
    installed = _dedupe(installed)
    if profile_id not in installed:
        raise ProfileNotInstalled(profile_id)

    remaining = [p for p in installed if p != profile_id]
    requiring = [
        other_id
        for other_id in remaining
        if profile_id in expand_requires(registry, list(registry.get(other_id).requires))
    ]
    if requiring:
        raise ProfileInUse(profile_id, requiring)

    return resolve_profiles(registry, remaining)


__all__ = [
    "expand_requires",
    "find_conflict",
    "attach_fallbacks",
    "resolve_profiles",
    "hard_dependents",
    "validate_removal",
]
