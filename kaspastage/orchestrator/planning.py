"""Installation planning and rendering."""

import logging
from typing import Any

import yaml

from ..errors import UnplaceableService
from .models import (
    CapacityReport,
    InstallationPlan,
    PlannedService,
    Resolution,
    ServiceDescriptor,
    Stage,
)
from .registry import ProfileRegistry

_logging = logging.getLogger(__name__)


def _collect_services(
    registry: ProfileRegistry, profile_ids: list[str]
) -> dict[str, PlannedService]:
    """Build one planned node per service name with its dependency edges.

    A service name declared by several profiles is owned by the first of
    them in (tier, profile id) order and placed at that tier. Its edges are
    the union over owners, except that a profile never contributes edges to
    a service it owns itself.
    """
    present = set(profile_ids)
    declarations: dict[str, list[tuple[int, str, ServiceDescriptor]]] = {}
    for profile_id in profile_ids:
        for service in registry.get(profile_id).services:
            declarations.setdefault(service.name, []).append(
                (service.tier, profile_id, service)
            )

    nodes = {}
    for name, declared in declarations.items():
        declared.sort(key=lambda entry: entry[:2])
        tier = declared[0][0]
        owner_ids = {profile_id for _, profile_id, _ in declared}
        depends_on: set[str] = set()
        required = False
        for _, profile_id, service in declared:
            profile = registry.get(profile_id)
            required = required or service.required

            depends_on.update(s.name for s in profile.services if s.tier < tier)
            depends_on.update(service.depends_on)

            upstream = list(profile.requires)
            upstream += [p for p in profile.prerequisites if p in present]
            upstream += [p for p in profile.optional_dependencies if p in present]
            for upstream_id in upstream:
                if upstream_id not in owner_ids:
                    depends_on.update(registry.get(upstream_id).service_names)

        depends_on.discard(name)
        nodes[name] = PlannedService(
            name=name,
            profile=declared[0][1],
            tier=tier,
            required=required,
            depends_on=frozenset(depends_on),
            owners=tuple(profile_id for _, profile_id, _ in declared),
        )
    return nodes


def build_stages(nodes: dict[str, PlannedService]) -> list[Stage]:
    """Group services into stages with Kahn's algorithm.

    Raises:
        UnplaceableService: If some services can never have all their
            dependencies satisfied
    """
    remaining = dict(nodes)
    placed: set[str] = set()
    stages = []

    while remaining:
        ready = [
            service
            for service in remaining.values()
            if all(dep in placed or dep not in nodes for dep in service.depends_on)
        ]
        if not ready:
            raise UnplaceableService(sorted(remaining))
        ready.sort(key=lambda s: (s.tier, s.name))
        stages.append(Stage(index=len(stages) + 1, services=ready))
        for service in ready:
            placed.add(service.name)
            del remaining[service.name]

    return stages


def merge_configuration(
    registry: ProfileRegistry,
    profile_ids: list[str],
    values: dict[str, str],
    fallback_profiles: list[str],
    resolution: Resolution,
) -> dict[str, str]:
    """Layer profile defaults, pre-applied fallback overrides and user values."""
    merged: dict[str, str] = {}
    for profile_id in profile_ids:
        for key, value in registry.get(profile_id).config_defaults.items():
            merged.setdefault(key, value)
    for profile_id in fallback_profiles:
        merged.update(resolution.fallbacks[profile_id].config_overrides)
    merged.update(values)
    return merged


def plan_installation(
    registry: ProfileRegistry,
    resolution: Resolution,
    configuration: dict[str, str] | None = None,
) -> InstallationPlan:
    """Convert a validated resolution into a staged installation plan."""
    configuration = configuration or {}
    profile_ids = resolution.profiles
    present = set(profile_ids)

    preapplied = [
        profile_id
        for profile_id in resolution.fallbacks
        if not present.intersection(registry.get(profile_id).optional_dependencies)
    ]
    for profile_id in preapplied:
        _logging.info(
            f"Using fallback '{resolution.fallbacks[profile_id].id}' for "
            f"{profile_id}: no optional dependency selected"
        )

    stages = build_stages(_collect_services(registry, profile_ids))
    merged = merge_configuration(registry, profile_ids, configuration, preapplied, resolution)

    missing = {}
    for profile_id in profile_ids:
        keys = [k for k in registry.get(profile_id).required_config if not merged.get(k)]
        if keys:
            missing[profile_id] = keys

    plan = InstallationPlan(
        profiles=list(profile_ids),
        stages=stages,
        configuration=merged,
        fallbacks=dict(resolution.fallbacks),
        preapplied_fallbacks=preapplied,
        missing_configuration=missing,
    )
    _logging.debug(
        f"Planned {len(plan.services())} services in {plan.total_stages} stages"
    )
    return plan


def render_plan(plan: InstallationPlan, report: CapacityReport | None = None) -> str:
    lines = [f"Installation Plan: {', '.join(plan.profiles) or '(empty)'}", ""]

    if plan.missing_configuration:
        lines.append("⚠️  Missing required configuration:")
        for profile_id, keys in plan.missing_configuration.items():
            lines.append(f"   • {profile_id}: {', '.join(keys)}")
        lines.append("")

    if plan.fallbacks:
        lines.append("Fallbacks:")
        for profile_id, fallback in plan.fallbacks.items():
            marker = " (active)" if profile_id in plan.preapplied_fallbacks else ""
            lines.append(f"   • {profile_id}: {fallback.id}{marker}")
        lines.append("")

    if report is not None:
        total = report.requirement.total
        lines.append(
            f"Resources: {total.cpu:g} CPU cores, {total.memory:g} GB memory, "
            f"{total.disk:g} GB disk"
        )
        if report.requirement.shared_services:
            shared = ", ".join(sorted(report.requirement.shared_services))
            lines.append(f"   Shared services counted once: {shared}")
        for warning in report.warnings:
            lines.append(f"⚠️  {warning}")
        lines.append("")

    lines.append("Stages:")
    for stage in plan.stages:
        lines.append(f"  {stage.index}. {', '.join(stage.service_names)}")
        for service in stage.services:
            flag = "" if service.required else " (optional)"
            lines.append(f"     - {service.name} [{service.profile}, tier {service.tier}]{flag}")

    return "\n".join(lines)


def build_compose_descriptor(
    plan: InstallationPlan, registry: ProfileRegistry
) -> dict[str, Any]:
    """Describe the planned services for the container runtime.

    Each service gets the configuration keys its owning profiles declare,
    its in-plan dependencies and its stage assignment.
    """
    services: dict[str, Any] = {}
    for stage in plan.stages:
        for service in stage.services:
            keys: list[str] = []
            for owner in service.owners:
                for key in registry.get(owner).config_keys:
                    if key not in keys:
                        keys.append(key)
            for owner in service.owners:
                fallback = plan.fallbacks.get(owner)
                if fallback is not None:
                    for key in fallback.config_overrides:
                        if key not in keys:
                            keys.append(key)

            entry: dict[str, Any] = {
                "container_name": service.name,
                "profiles": list(service.owners),
                "labels": {
                    "kaspastage.profile": service.profile,
                    "kaspastage.stage": str(stage.index),
                },
            }
            environment = {k: plan.configuration[k] for k in keys if k in plan.configuration}
            if environment:
                entry["environment"] = environment
            if service.depends_on:
                entry["depends_on"] = sorted(service.depends_on)
            services[service.name] = entry

    return {
        "services": services,
        "x-kaspastage": {
            "profiles": list(plan.profiles),
            "stages": [stage.service_names for stage in plan.stages],
        },
    }


def render_compose_yaml(descriptor: dict[str, Any]) -> str:
    return yaml.safe_dump(descriptor, default_flow_style=False, sort_keys=False)


__all__ = [
    "build_stages",
    "merge_configuration",
    "plan_installation",
    "render_plan",
    "build_compose_descriptor",
    "render_compose_yaml",
]
