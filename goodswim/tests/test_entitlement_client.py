from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from goodswim.app.billing import InMemorySubscriptionRepository, SubscriptionChangeBus
from goodswim.app.entitlements import (
    UNLIMITED,
    EffectiveTier,
    EntitlementClient,
    EntitlementState,
    Feature,
    InMemoryEntitlementCache,
    LoadState,
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionUpdate,
    Tier,
)

T0 = datetime(2024, 5, 6, 9, 30, tzinfo=timezone.utc)


class FakeTeamDirectory:
    def __init__(self) -> None:
        self.created: Dict[str, datetime] = {}
        self.swimmers: Dict[str, int] = {}
        self.count_calls: List[str] = []

    def team_created_at(self, team_id: str) -> Optional[datetime]:
        return self.created.get(team_id)

    def count_swimmers(self, team_id: str) -> int:
        self.count_calls.append(team_id)
        return self.swimmers.get(team_id, 0)


class BrokenRepository:
    def get(self, team_id: str) -> Optional[SubscriptionRecord]:
        raise RuntimeError("database unavailable")


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def components():
    repository = InMemorySubscriptionRepository()
    directory = FakeTeamDirectory()
    directory.created["team-1"] = T0
    clock = Clock(T0)
    client = EntitlementClient(repository, directory, InMemoryEntitlementCache(), clock=clock)
    return client, repository, directory, clock


def test_new_team_is_trial_with_thirteen_days_left_after_one_day(components) -> None:
    client, _repository, _directory, clock = components
    clock.now = T0 + timedelta(days=1)

    state = client.load("team-1")

    assert state.load_state == LoadState.READY
    assert state.effective_tier(clock.now) == EffectiveTier.TRIAL
    assert state.trial_days_left(clock.now) == 13
    assert state.is_trial(clock.now) is True
    assert state.has_feature(Feature.AI_VIDEO_ANALYSIS, clock.now) is True


def test_unpaid_team_expires_after_trial_window(components) -> None:
    client, _repository, directory, clock = components
    directory.swimmers["team-1"] = 0
    clock.now = T0 + timedelta(days=15)

    state = client.load("team-1")

    assert state.effective_tier(clock.now) == EffectiveTier.EXPIRED
    assert state.has_feature("ai_video_analysis", clock.now) is False
    assert state.can_add_swimmer(clock.now) is False
    assert state.remaining_swimmers(clock.now) == 0
    assert state.trial_days_left(clock.now) == 0
    assert state.is_expired(clock.now) is True


def test_snapshot_never_loads(components) -> None:
    client, _repository, directory, _clock = components

    state = client.snapshot("team-1")

    assert state.load_state == LoadState.UNINITIALIZED
    assert directory.count_calls == []
    assert state.effective_tier() is None
    assert state.tier() == EffectiveTier.TRIAL
    assert state.is_trial() is True
    assert state.has_feature(Feature.PARENT_PORTAL) is False
    assert state.can_add_swimmer() is False
    assert state.trial_days_left() == 0


def test_load_caches_snapshot(components) -> None:
    client, _repository, directory, _clock = components

    first = client.load("team-1")
    second = client.load("team-1")

    assert first is second
    assert client.snapshot("team-1") is first
    assert directory.count_calls == ["team-1"]


def test_paid_team_has_unlimited_swimmers(components) -> None:
    client, repository, directory, clock = components
    repository.upsert("team-1", SubscriptionUpdate(status=SubscriptionStatus.ACTIVE, tier=Tier.PRO))
    directory.swimmers["team-1"] = 400

    state = client.load("team-1")

    assert state.effective_tier(clock.now) == EffectiveTier.PRO
    assert state.is_paid(clock.now) is True
    assert state.can_add_swimmer(clock.now) is True
    assert state.remaining_swimmers(clock.now) == UNLIMITED
    assert state.has_feature(Feature.MEET_REPORTS, clock.now) is True
    assert state.has_feature(Feature.AI_CHAT, clock.now) is False
    assert state.trial_days_left(clock.now) == 0


def test_trial_swimmer_ceiling(components) -> None:
    client, _repository, directory, clock = components
    directory.swimmers["team-1"] = 24

    state = client.load("team-1")
    assert state.can_add_swimmer(clock.now) is True
    assert state.remaining_swimmers(clock.now) == 1

    directory.swimmers["team-1"] = 25
    full = client.refresh("team-1")
    assert full.can_add_swimmer(clock.now) is False
    assert full.remaining_swimmers(clock.now) == 0


def test_unknown_feature_is_denied(components) -> None:
    client, repository, _directory, clock = components
    repository.upsert("team-1", SubscriptionUpdate(status=SubscriptionStatus.ACTIVE, tier=Tier.CLUB))

    state = client.load("team-1")

    assert state.has_feature("teleportation", clock.now) is False


@pytest.mark.parametrize(
    ("days_left", "expiring"),
    [(0.5, True), (3, True), (3.5, False), (10, False)],
)
def test_trial_expiring_soon_window(components, days_left: float, expiring: bool) -> None:
    client, repository, _directory, clock = components
    repository.upsert(
        "team-1",
        SubscriptionUpdate(
            status=SubscriptionStatus.TRIALING,
            tier=Tier.TRIAL,
            trial_end=clock.now + timedelta(days=days_left),
        ),
    )

    state = client.load("team-1")

    assert state.is_trial_expiring_soon(clock.now) is expiring


def test_expired_trial_is_not_expiring_soon(components) -> None:
    client, _repository, _directory, clock = components
    clock.now = T0 + timedelta(days=20)

    assert client.load("team-1").is_trial_expiring_soon(clock.now) is False


def test_failed_load_is_restrictive_and_drops_stale_snapshot() -> None:
    directory = FakeTeamDirectory()
    cache = InMemoryEntitlementCache()
    cache.set(
        EntitlementState(team_id="team-1", load_state=LoadState.READY, subscription=SubscriptionRecord(team_id="team-1")),
        T0 + timedelta(minutes=5),
    )
    client = EntitlementClient(BrokenRepository(), directory, cache, clock=lambda: T0)

    state = client.refresh("team-1")

    assert state.load_state == LoadState.FAILED
    assert "database unavailable" in (state.error or "")
    assert state.has_feature(Feature.PARENT_PORTAL) is False
    assert state.can_add_swimmer() is False
    assert cache.get("team-1", T0) is None


def test_change_notification_refreshes_tracked_team(components) -> None:
    client, repository, _directory, clock = components
    bus = SubscriptionChangeBus()
    bus.subscribe(client.handle_subscription_change)
    client.load("team-1")

    repository.upsert("team-1", SubscriptionUpdate(status=SubscriptionStatus.ACTIVE, tier=Tier.CLUB))
    assert client.snapshot("team-1").effective_tier(clock.now) == EffectiveTier.TRIAL

    bus.publish("team-1")

    assert client.snapshot("team-1").effective_tier(clock.now) == EffectiveTier.CLUB


def test_change_notification_ignores_untracked_team(components) -> None:
    client, _repository, directory, _clock = components

    client.handle_subscription_change("team-2")

    assert client.snapshot("team-2").load_state == LoadState.UNINITIALIZED
    assert directory.count_calls == []


def test_team_without_creation_time_starts_trial_now() -> None:
    clock = Clock(T0)
    client = EntitlementClient(
        InMemorySubscriptionRepository(), FakeTeamDirectory(), InMemoryEntitlementCache(), clock=clock
    )

    state = client.load("ghost")

    assert state.trial_days_left(T0) == 14


def test_expired_snapshot_picks_up_new_swimmer_count(components) -> None:
    client, _repository, directory, clock = components
    clock.now = T0 + timedelta(days=1)
    assert client.load("team-1").swimmer_count == 0

    directory.swimmers["team-1"] = 40
    clock.now = T0 + timedelta(days=2)
    state = client.load("team-1")

    assert state.swimmer_count == 40
    assert state.can_add_swimmer(clock.now) is False
    assert state.remaining_swimmers(clock.now) == 0


def test_expired_snapshot_sees_write_that_bypassed_change_bus(components) -> None:
    client, repository, _directory, clock = components
    repository.upsert("team-1", SubscriptionUpdate(status=SubscriptionStatus.ACTIVE, tier=Tier.PRO))
    assert client.load("team-1").effective_tier(clock.now) == EffectiveTier.PRO

    repository.upsert("team-1", SubscriptionUpdate(status=SubscriptionStatus.CANCELED, tier=Tier.TRIAL))
    clock.now = T0 + timedelta(minutes=6)
    state = client.load("team-1")

    assert state.is_expired(clock.now) is True
    assert state.has_feature(Feature.MEET_REPORTS, clock.now) is False


def test_snapshot_within_ttl_is_served_from_cache(components) -> None:
    client, _repository, directory, clock = components
    first = client.load("team-1")

    clock.now = T0 + timedelta(minutes=4)

    assert client.load("team-1") is first
    assert directory.count_calls == ["team-1"]


def test_expired_snapshot_reads_as_uninitialized(components) -> None:
    client, _repository, directory, clock = components
    client.load("team-1")

    clock.now = T0 + timedelta(minutes=5)
    state = client.snapshot("team-1")

    assert state.load_state == LoadState.UNINITIALIZED
    assert state.can_add_swimmer() is False
    assert directory.count_calls == ["team-1"]


def test_cache_ttl_is_configurable() -> None:
    clock = Clock(T0)
    directory = FakeTeamDirectory()
    client = EntitlementClient(
        InMemorySubscriptionRepository(), directory, InMemoryEntitlementCache(), clock=clock, ttl_seconds=30
    )
    client.load("team-1")

    clock.now = T0 + timedelta(seconds=31)
    client.load("team-1")

    assert directory.count_calls == ["team-1", "team-1"]


def test_expired_team_has_no_remaining_swimmer_seats(components) -> None:
    client, repository, directory, clock = components
    repository.upsert("team-1", SubscriptionUpdate(status=SubscriptionStatus.PAST_DUE, tier=Tier.STARTER))
    directory.swimmers["team-1"] = 3

    state = client.load("team-1")

    # Expired teams are looked up with the trial ceiling but get no seats under it.
    assert state.limits.max_swimmers == 25
    assert state.remaining_swimmers(clock.now) == 0
    assert state.can_add_swimmer(clock.now) is False
