"""Tests for resource aggregation and capacity checks."""

from kaspastage.orchestrator import HostCapacity, ResourceCost
from kaspastage.orchestrator.resources import calculate_requirements, check_capacity


class TestCalculateRequirements:
    """Tests for calculate_requirements()."""

    def test_single_profile(self, registry):
        requirement = calculate_requirements(registry, ["core"])
        assert requirement.total == ResourceCost(cpu=2.5, memory=4.5, disk=101)
        assert requirement.shared_services == {}

    def test_profiles_summed(self, registry):
        requirement = calculate_requirements(registry, ["core", "mining"])
        assert requirement.total == ResourceCost(cpu=3.5, memory=5, disk=102)
        assert set(requirement.per_profile) == {"core", "mining"}

    def test_shared_service_counted_once(self, shared_db_registry):
        requirement = calculate_requirements(shared_db_registry, ["indexer-a", "indexer-b"])
        # 3/5/60 + 3/6/70 minus one copy of the 2/4/50 database
        assert requirement.total == ResourceCost(cpu=4, memory=7, disk=80)
        assert requirement.shared_services == {"shared-db": ["indexer-a", "indexer-b"]}

    def test_shared_service_with_unrelated_profile(self, shared_db_registry):
        requirement = calculate_requirements(
            shared_db_registry, ["node", "indexer-a", "indexer-b"]
        )
        assert requirement.total == ResourceCost(cpu=6, memory=11, disk=180)

    def test_duplicate_ids_counted_once(self, registry):
        requirement = calculate_requirements(registry, ["core", "core"])
        assert requirement.total == ResourceCost(cpu=2.5, memory=4.5, disk=101)


class TestCheckCapacity:
    """Tests for check_capacity()."""

    def test_sufficient(self, registry):
        requirement = calculate_requirements(registry, ["core"])
        report = check_capacity(requirement, HostCapacity(cpu=8, memory=16, disk=500))
        assert report.sufficient
        assert report.warnings == []

    def test_shortfall_reported_per_resource(self, registry):
        requirement = calculate_requirements(registry, ["archive-node"])
        report = check_capacity(requirement, HostCapacity(cpu=4, memory=32, disk=200))
        assert not report.sufficient
        assert report.warnings == [
            "CPU: 8 cores required, 4 cores available",
            "Disk: 1000 GB required, 200 GB available",
        ]

    def test_exact_fit_is_sufficient(self, registry):
        requirement = calculate_requirements(registry, ["mining"])
        report = check_capacity(requirement, HostCapacity(cpu=1, memory=0.5, disk=1))
        assert report.sufficient

    def test_unknown_capacity(self, registry):
        requirement = calculate_requirements(registry, ["core"])
        report = check_capacity(requirement, None)
        assert report.sufficient
        assert report.capacity is None
        assert report.warnings == ["Host capacity could not be determined"]
