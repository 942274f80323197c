"""Read-only catalog of profile definitions."""

import logging
from typing import Iterable

from ..errors import CatalogError, UnknownProfile
from .models import Profile, Template

_logging = logging.getLogger(__name__)

MIN_TIER = 1
MAX_TIER = 3


class ProfileRegistry:
    """Immutable lookup of profiles and templates, validated once at construction.

    Raises:
        CatalogError: On duplicate IDs, duplicate service names within a
            profile, out-of-range tiers or references to unknown profiles.
    """

    def __init__(
        self, profiles: Iterable[Profile], templates: Iterable[Template] = ()
    ):
        self._profiles: dict[str, Profile] = {}
        for profile in profiles:
            if profile.id in self._profiles:
                raise CatalogError(f"duplicate profile id '{profile.id}'")
            self._profiles[profile.id] = profile

        self._templates: dict[str, Template] = {}
        for template in templates:
            if template.id in self._templates:
                raise CatalogError(f"duplicate template id '{template.id}'")
            self._templates[template.id] = template

        self._validate()
        _logging.debug(
            f"Loaded {len(self._profiles)} profiles and {len(self._templates)} templates"
        )

    def _validate(self) -> None:
        for profile in self._profiles.values():
            seen: set[str] = set()
            for service in profile.services:
                if service.name in seen:
                    raise CatalogError(
                        f"profile '{profile.id}' declares service '{service.name}' twice"
                    )
                seen.add(service.name)
                if not MIN_TIER <= service.tier <= MAX_TIER:
                    raise CatalogError(
                        f"service '{service.name}' in profile '{profile.id}' has tier "
                        f"{service.tier}, expected {MIN_TIER}-{MAX_TIER}"
                    )

            for service in profile.services:
                for dep in service.depends_on:
                    if dep not in seen:
                        raise CatalogError(
                            f"service '{service.name}' in profile '{profile.id}' "
                            f"depends on unknown service '{dep}'"
                        )
                    if dep == service.name:
                        raise CatalogError(
                            f"service '{service.name}' in profile '{profile.id}' "
                            "depends on itself"
                        )

            for field in ("requires", "prerequisites", "conflicts", "optional_dependencies"):
                for ref in getattr(profile, field):
                    if ref not in self._profiles:
                        raise CatalogError(
                            f"profile '{profile.id}' {field} references unknown "
                            f"profile '{ref}'"
                        )

            if profile.optional_dependencies and profile.fallback is None:
                raise CatalogError(
                    f"profile '{profile.id}' declares optional dependencies "
                    "without a fallback strategy"
                )

        for template in self._templates.values():
            for ref in template.profiles:
                if ref not in self._profiles:
                    raise CatalogError(
                        f"template '{template.id}' references unknown profile '{ref}'"
                    )

    def get(self, profile_id: str) -> Profile:
        try:
            return self._profiles[profile_id]
        except KeyError:
            raise UnknownProfile(profile_id) from None

    def __contains__(self, profile_id: object) -> bool:
        return profile_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def ids(self) -> list[str]:
        return list(self._profiles)

    def all(self) -> list[Profile]:
        return list(self._profiles.values())

    def by_category(self) -> dict[str, list[Profile]]:
        """Group profiles by category, preserving catalog order within each group."""
        grouped: dict[str, list[Profile]] = {}
        for profile in self._profiles.values():
            grouped.setdefault(profile.category, []).append(profile)
        return grouped

    @property
    def templates(self) -> list[Template]:
        return list(self._templates.values())

    def get_template(self, template_id: str) -> Template:
        try:
            return self._templates[template_id]
        except KeyError:
            raise CatalogError(f"template '{template_id}' not found") from None

    def dependents_of(self, profile_id: str) -> list[str]:
        """Profiles that list ``profile_id`` in their ``requires``."""
        return [p.id for p in self._profiles.values() if profile_id in p.requires]


__all__ = ["ProfileRegistry"]
