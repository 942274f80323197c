"""Aggregate resource requirements and compare them with host capacity."""

import logging
from typing import Iterable

from .models import (
    CapacityReport,
    HostCapacity,
    ResourceCost,
    ResourceRequirement,
)
from .registry import ProfileRegistry

_logging = logging.getLogger(__name__)


def calculate_requirements(
    registry: ProfileRegistry, profile_ids: Iterable[str]
) -> ResourceRequirement:
    """Sum profile costs, counting services shared by several profiles once.

    A service appearing under ``k`` selected profiles contributes its cost
    ``k - 1`` times too often in the raw sum; that excess is subtracted.
    """
    ids = list(dict.fromkeys(profile_ids))
    total = ResourceCost()
    per_profile: dict[str, ResourceCost] = {}
    owners: dict[str, list[str]] = {}
    service_cost: dict[str, ResourceCost] = {}

    for profile_id in ids:
        profile = registry.get(profile_id)
        per_profile[profile_id] = profile.resources
        total = total + profile.resources
        for service in profile.services:
            owners.setdefault(service.name, []).append(profile_id)
            service_cost.setdefault(service.name, service.resources)

    shared = {name: p for name, p in owners.items() if len(p) > 1}
    for name, profiles in shared.items():
        total = total - service_cost[name].scaled(len(profiles) - 1)

    if shared:
        _logging.debug(f"Shared services counted once: {sorted(shared)}")
    return ResourceRequirement(total=total, shared_services=shared, per_profile=per_profile)


def check_capacity(
    requirement: ResourceRequirement, capacity: HostCapacity | None
) -> CapacityReport:
    """Compare a requirement with host capacity.

    Never raises; shortfalls become warnings and ``sufficient=False``.
    An unknown capacity is reported as a warning but counted as sufficient.
    """
    if capacity is None:
        return CapacityReport(
            requirement=requirement,
            capacity=None,
            sufficient=True,
            warnings=["Host capacity could not be determined"],
        )

    warnings = []
    needed = requirement.total
    checks = [
        ("CPU", needed.cpu, capacity.cpu, "cores"),
        ("Memory", needed.memory, capacity.memory, "GB"),
        ("Disk", needed.disk, capacity.disk, "GB"),
    ]
    for label, required, available, unit in checks:
        if required > available:
            warnings.append(
                f"{label}: {required:g} {unit} required, {available:g} {unit} available"
            )

    for warning in warnings:
        _logging.warning(f"Insufficient capacity: {warning}")
    return CapacityReport(
        requirement=requirement,
        capacity=capacity,
        sufficient=not warnings,
        warnings=warnings,
    )


__all__ = ["calculate_requirements", "check_capacity"]
