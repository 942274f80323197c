"""Tests for profile set resolution and removal validation."""

import itertools

import pytest

from kaspastage.errors import (
    CircularDependency,
    PrerequisiteNotMet,
    ProfileConflict,
    ProfileInUse,
    ProfileNotInstalled,
    UnknownProfile,
)
from kaspastage.orchestrator import ProfileRegistry, resolve_profiles, validate_removal
from kaspastage.orchestrator.resolution import expand_requires, hard_dependents


@pytest.fixture
def chain_registry(make_profile) -> ProfileRegistry:
    """web requires api requires db; cache is independent."""
    return ProfileRegistry(
        [
            make_profile("db", [("postgres", True, 1)]),
            make_profile("api", [("api", True, 2)], requires=("db",)),
            make_profile("web", [("web", True, 3)], requires=("api",)),
            make_profile("cache", [("redis", True, 1)]),
        ]
    )


@pytest.fixture
def cyclic_registry(make_profile) -> ProfileRegistry:
    return ProfileRegistry(
        [
            make_profile("a", requires=("b",)),
            make_profile("b", requires=("c",)),
            make_profile("c", requires=("a",)),
            make_profile("x", conflicts=("a",)),
            make_profile("lonely", prerequisites=("x",)),
        ]
    )


class TestResolveBundledCatalog:
    """Scenarios against the bundled catalog."""

    def test_mining_alone_fails_prerequisite(self, registry):
        with pytest.raises(PrerequisiteNotMet) as exc_info:
            resolve_profiles(registry, ["mining"])
        assert exc_info.value.profile_id == "mining"
        assert exc_info.value.group == ["core", "archive-node"]

    def test_core_and_mining_succeeds(self, registry):
        resolution = resolve_profiles(registry, ["core", "mining"])
        assert resolution.profiles == ["core", "mining"]
        assert resolution.fallbacks == {}

    def test_archive_node_satisfies_mining(self, registry):
        resolution = resolve_profiles(registry, ["archive-node", "mining"])
        assert set(resolution.profiles) == {"archive-node", "mining"}

    def test_core_and_archive_conflict(self, registry):
        with pytest.raises(ProfileConflict) as exc_info:
            resolve_profiles(registry, ["core", "archive-node"])
        assert set(exc_info.value.profiles) == {"core", "archive-node"}

    def test_conflict_detected_regardless_of_declaring_side(self, registry):
        with pytest.raises(ProfileConflict):
            resolve_profiles(registry, ["archive-node", "core"])

    def test_unknown_profile(self, registry):
        with pytest.raises(UnknownProfile, match="ghost"):
            resolve_profiles(registry, ["core", "ghost"])

    def test_fallbacks_attached(self, registry):
        resolution = resolve_profiles(
            registry, ["core", "indexer-services", "kaspa-user-applications"]
        )
        assert resolution.fallbacks["indexer-services"].id == "public-node"
        assert resolution.fallbacks["kaspa-user-applications"].id == "public-indexers"
        assert "core" not in resolution.fallbacks

    def test_optional_dependency_not_required(self, registry):
        resolution = resolve_profiles(registry, ["kaspa-user-applications"])
        assert resolution.profiles == ["kaspa-user-applications"]

    def test_duplicates_ignored(self, registry):
        resolution = resolve_profiles(registry, ["core", "core"])
        assert resolution.requested == ["core"]

    def test_resolution_is_repeatable(self, registry):
        first = resolve_profiles(registry, ["core", "mining"])
        second = resolve_profiles(registry, ["core", "mining"])
        assert first == second

    def test_every_accepted_set_is_acyclic(self, registry):
        ids = registry.ids()
        for size in range(1, len(ids) + 1):
            for combo in itertools.combinations(ids, size):
                try:
                    resolution = resolve_profiles(registry, combo)
                except (PrerequisiteNotMet, ProfileConflict):
                    continue
                # expansion puts required profiles before their dependents
                position = {p: i for i, p in enumerate(resolution.profiles)}
                for profile_id in resolution.profiles:
                    for required in registry.get(profile_id).requires:
                        assert position[required] < position[profile_id]


class TestRequiresExpansion:
    """Tests for transitive requires and cycle detection."""

    def test_transitive_requires_added(self, chain_registry):
        resolution = resolve_profiles(chain_registry, ["web"])
        assert resolution.profiles == ["db", "api", "web"]
        assert resolution.added == ["db", "api"]

    def test_cycle_reported_with_full_path(self, cyclic_registry):
        with pytest.raises(CircularDependency) as exc_info:
            resolve_profiles(cyclic_registry, ["a"])
        assert exc_info.value.cycle == ["a", "b", "c", "a"]

    def test_cycle_checked_before_conflict(self, cyclic_registry):
        with pytest.raises(CircularDependency):
            resolve_profiles(cyclic_registry, ["x", "a"])

    def test_unknown_checked_before_cycle(self, cyclic_registry):
        with pytest.raises(UnknownProfile):
            resolve_profiles(cyclic_registry, ["a", "ghost"])

    def test_conflict_checked_before_prerequisite(self, make_profile):
        registry = ProfileRegistry(
            [
                make_profile("base"),
                make_profile("left", conflicts=("right",)),
                make_profile("right", prerequisites=("base",)),
            ]
        )
        with pytest.raises(ProfileConflict):
            resolve_profiles(registry, ["left", "right"])

    def test_expand_requires_order(self, chain_registry):
        assert expand_requires(chain_registry, ["web", "cache"]) == ["db", "api", "web", "cache"]


class TestHardDependents:
    """Tests for hard_dependents()."""

    def test_sole_prerequisite_member(self, registry):
        assert hard_dependents(registry, "core", ["core", "mining"]) == ["mining"]

    def test_optional_dependency_is_not_hard(self, registry):
        assert hard_dependents(registry, "core", ["core", "indexer-services"]) == []

    def test_transitive_requires(self, chain_registry):
        assert hard_dependents(chain_registry, "db", ["db", "api", "web"]) == ["api", "web"]


class TestValidateRemoval:
    """Tests for validate_removal()."""

    def test_not_installed(self, registry):
        with pytest.raises(ProfileNotInstalled):
            validate_removal(registry, ["core"], "mining")

    def test_required_profile_in_use(self, chain_registry):
        with pytest.raises(ProfileInUse) as exc_info:
            validate_removal(chain_registry, ["db", "api", "web"], "db")
        assert exc_info.value.dependents == ["api", "web"]

    def test_removing_last_prerequisite(self, registry):
        with pytest.raises(PrerequisiteNotMet):
            validate_removal(registry, ["core", "mining"], "core")

    def test_valid_removal_returns_remaining(self, registry):
        resolution = validate_removal(registry, ["core", "indexer-services"], "core")
        assert resolution.profiles == ["indexer-services"]
