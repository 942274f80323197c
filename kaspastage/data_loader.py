"""Data loader for the bundled profile catalog.

This module provides cached access to the profile and template definitions
loaded from ``data/profiles.json``.

Caching Strategy:
- The catalog is loaded once on first access and cached in module-level variables
- Use clear_cache() to force a reload (tests, or a catalog path override)

Validation happens in two passes: this module checks the shape of every
record and raises ConfigError for malformed data; ProfileRegistry then checks
cross references (dangling IDs, duplicate services) and raises CatalogError.
"""

from pathlib import Path

from kaspastage.config import ConfigError, load_config
from kaspastage.errors import format_field_error
from kaspastage.orchestrator.models import (
    FallbackStrategy,
    Profile,
    ResourceCost,
    ServiceDescriptor,
    Template,
)
from kaspastage.orchestrator.registry import ProfileRegistry
from kaspastage.paths import get_packaged_profiles_path


# Module-level caches
_profiles_cache: dict[str, Profile] | None = None
_templates_cache: dict[str, Template] | None = None
_registry_cache: ProfileRegistry | None = None

VALID_CATEGORIES = {"essential", "optional", "advanced"}


def _load_json_file(path: Path) -> dict:
    """Load and parse a JSON file with error handling.

    Raises:
        ConfigError: If file cannot be read or contains invalid JSON
    """
    if not path.exists():
        raise ConfigError(f"Data file not found: {path}")

    if not path.is_file():
        raise ConfigError(f"Data path is not a file: {path}")

    try:
        return load_config(path)
    except ConfigError as e:
        raise ConfigError(f"Failed to load data file {path}: {e}") from e


def _require_str_field(data: dict, field: str, entity_name: str) -> None:
    if field not in data:
        raise ConfigError(f"{entity_name} missing required field: {field}")
    if not isinstance(data[field], str) or not data[field].strip():
        raise ConfigError(format_field_error(entity_name, field, "must be a non-empty string"))


def _optional_field(data: dict, field: str, entity_name: str, field_type: type) -> None:
    if field in data and data[field] is not None:
        if not isinstance(data[field], field_type):
            type_name = field_type.__name__
            raise ConfigError(
                format_field_error(entity_name, field, f"must be a {type_name} or null")
            )


def _require_list_field(data: dict, field: str, entity_name: str) -> None:
    if field not in data:
        raise ConfigError(f"{entity_name} missing required field: {field}")
    if not isinstance(data[field], list):
        raise ConfigError(format_field_error(entity_name, field, "must be an array"))


def _validate_string_list(data: dict, field: str, entity_name: str) -> None:
    """Validate an optional field holding a list of non-empty strings.

    Raises:
        ConfigError: If field not a list or contains invalid strings
    """
    if field in data:
        if not isinstance(data[field], list):
            raise ConfigError(format_field_error(entity_name, field, "must be an array"))
        for i, item in enumerate(data[field]):
            if not isinstance(item, str) or not item.strip():
                raise ConfigError(
                    f"{entity_name} {field}[{i}] must be a non-empty string"
                )


def _validate_string_map(data: dict, field: str, entity_name: str) -> None:
    if field in data:
        if not isinstance(data[field], dict):
            raise ConfigError(format_field_error(entity_name, field, "must be an object"))
        for key, value in data[field].items():
            if not isinstance(value, str):
                raise ConfigError(
                    f"{entity_name} {field}.{key} must be a string"
                )


def _parse_resources(data: dict, entity_name: str) -> ResourceCost:
    raw = data.get("resources", {})
    if not isinstance(raw, dict):
        raise ConfigError(format_field_error(entity_name, "resources", "must be an object"))
    values = {}
    for key in ("cpu", "memory", "disk"):
        value = raw.get(key, 0)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ConfigError(
                f"{entity_name} resources.{key} must be a non-negative number"
            )
        values[key] = float(value)
    return ResourceCost(**values)


def _parse_service(data: dict, profile_id: str, index: int) -> ServiceDescriptor:
    entity = f"Profile '{profile_id}' services[{index}]"
    if not isinstance(data, dict):
        raise ConfigError(f"{entity} must be an object")

    _require_str_field(data, "name", entity)
    _optional_field(data, "required", entity, bool)
    _optional_field(data, "description", entity, str)
    _validate_string_list(data, "depends_on", entity)

    tier = data.get("tier", 1)
    if isinstance(tier, bool) or not isinstance(tier, int):
        raise ConfigError(format_field_error(entity, "tier", "must be an integer"))

    return ServiceDescriptor(
        name=data["name"],
        required=data.get("required", True),
        tier=tier,
        description=data.get("description") or "",
        depends_on=tuple(data.get("depends_on", [])),
        resources=_parse_resources(data, entity),
    )


def _parse_fallback(data: dict, profile_id: str) -> FallbackStrategy | None:
    raw = data.get("fallback")
    if raw is None:
        return None
    entity = f"Profile '{profile_id}' fallback"
    if not isinstance(raw, dict):
        raise ConfigError(f"{entity} must be an object")
    _require_str_field(raw, "id", entity)
    _require_str_field(raw, "message", entity)
    _optional_field(raw, "target", entity, str)
    _validate_string_map(raw, "config_overrides", entity)
    return FallbackStrategy(
        id=raw["id"],
        message=raw["message"],
        target=raw.get("target"),
        config_overrides=dict(raw.get("config_overrides", {})),
    )


def _validate_profile_data(data: dict, profile_id: str) -> None:
    entity = f"Profile '{profile_id}'"
    for field in ("name", "description", "category"):
        _require_str_field(data, field, entity)

    if data["category"] not in VALID_CATEGORIES:
        sorted_allowed = ", ".join(sorted(VALID_CATEGORIES))
        raise ConfigError(
            f"{entity} has invalid category: {data['category']}. "
            f"Must be one of: {sorted_allowed}"
        )

    _require_list_field(data, "services", entity)
    for field in ("requires", "prerequisites", "conflicts", "optional_dependencies"):
        _validate_string_list(data, field, entity)

    ports = data.get("ports", [])
    if not isinstance(ports, list) or not all(
        isinstance(p, int) and not isinstance(p, bool) for p in ports
    ):
        raise ConfigError(format_field_error(entity, "ports", "must be an array of integers"))

    configuration = data.get("configuration", {})
    if not isinstance(configuration, dict):
        raise ConfigError(format_field_error(entity, "configuration", "must be an object"))
    _validate_string_list(configuration, "required", f"{entity} configuration")
    _validate_string_list(configuration, "optional", f"{entity} configuration")
    _validate_string_map(configuration, "defaults", f"{entity} configuration")


def _parse_profile(data: dict, profile_id: str) -> Profile:
    _validate_profile_data(data, profile_id)
    configuration = data.get("configuration", {})
    return Profile(
        id=profile_id,
        name=data["name"],
        description=data["description"],
        category=data["category"],
        services=tuple(
            _parse_service(s, profile_id, i) for i, s in enumerate(data["services"])
        ),
        requires=tuple(data.get("requires", [])),
        prerequisites=tuple(data.get("prerequisites", [])),
        conflicts=tuple(data.get("conflicts", [])),
        optional_dependencies=tuple(data.get("optional_dependencies", [])),
        fallback=_parse_fallback(data, profile_id),
        resources=_parse_resources(data, f"Profile '{profile_id}'"),
        ports=tuple(data.get("ports", [])),
        required_config=tuple(configuration.get("required", [])),
        optional_config=tuple(configuration.get("optional", [])),
        config_defaults=dict(configuration.get("defaults", {})),
    )


def _parse_template(data: dict, template_id: str) -> Template:
    entity = f"Template '{template_id}'"
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid profiles data file: '{template_id}' must be an object")
    _require_str_field(data, "name", entity)
    _require_str_field(data, "description", entity)
    _require_list_field(data, "profiles", entity)
    _validate_string_list(data, "profiles", entity)
    _validate_string_map(data, "config", entity)
    return Template(
        id=template_id,
        name=data["name"],
        description=data["description"],
        profiles=tuple(data["profiles"]),
        config=dict(data.get("config", {})),
    )


def parse_catalog(raw_data: dict) -> tuple[dict[str, Profile], dict[str, Template]]:
    """Convert a raw catalog document into Profile and Template records.

    Raises:
        ConfigError: If any record is malformed
    """
    if "profiles" not in raw_data:
        raise ConfigError("Invalid profiles data file: missing top-level 'profiles' key")
    if not isinstance(raw_data["profiles"], dict):
        raise ConfigError("Invalid profiles data file: 'profiles' must be an object")

    profiles = {}
    for profile_id, profile_data in raw_data["profiles"].items():
        if not isinstance(profile_data, dict):
            raise ConfigError(
                f"Invalid profiles data file: '{profile_id}' must be an object"
            )
        profiles[profile_id] = _parse_profile(profile_data, profile_id)

    raw_templates = raw_data.get("templates", {})
    if not isinstance(raw_templates, dict):
        raise ConfigError("Invalid profiles data file: 'templates' must be an object")
    templates = {
        template_id: _parse_template(template_data, template_id)
        for template_id, template_data in raw_templates.items()
    }
    return profiles, templates


def _load_catalog() -> tuple[dict[str, Profile], dict[str, Template]]:
    global _profiles_cache, _templates_cache
    if _profiles_cache is None or _templates_cache is None:
        raw_data = _load_json_file(get_packaged_profiles_path())
        _profiles_cache, _templates_cache = parse_catalog(raw_data)
    return _profiles_cache, _templates_cache


def get_profiles() -> dict[str, Profile]:
    """Load all profiles from the bundled catalog.

    Returns:
        Dictionary mapping profile ID to Profile instance

    Raises:
        ConfigError: If file cannot be loaded or data is invalid
    """
    return _load_catalog()[0]


def get_templates() -> dict[str, Template]:
    return _load_catalog()[1]


def load_registry(path: Path | None = None) -> ProfileRegistry:
    """Build the validated ProfileRegistry.

    Args:
        path: Alternate catalog file; bypasses the cache when given

    Raises:
        ConfigError: If the catalog file is unreadable or malformed
        CatalogError: If the catalog has duplicate IDs or dangling references
    """
    global _registry_cache

    if path is not None:
        profiles, templates = parse_catalog(_load_json_file(path))
        return ProfileRegistry(profiles.values(), templates.values())

    if _registry_cache is not None:
        return _registry_cache

    _registry_cache = ProfileRegistry(
        get_profiles().values(), get_templates().values()
    )
    return _registry_cache


def clear_cache() -> None:
    """Clear all cached catalog data."""
    global _profiles_cache, _templates_cache, _registry_cache
    _profiles_cache = None
    _templates_cache = None
    _registry_cache = None


__all__ = [
    "parse_catalog",
    "get_profiles",
    "get_templates",
    "load_registry",
    "clear_cache",
]
