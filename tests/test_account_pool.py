from __future__ import annotations

from datetime import timedelta

import pytest

from src.social.account_pool import AccountCriteria, AccountPool, is_similar_category
from src.storage.models import SocialAccount


def _account(session, clock, username: str, **overrides) -> SocialAccount:
    values = dict(
        tenant_id="tenant-1",
        platform="tiktok",
        username=username,
        niche=None,
        daily_limit=10,
        used_today=0,
        last_reset=clock(),
        created_at=clock() - timedelta(days=60),
        updated_at=clock(),
    )
    values.update(overrides)
    account = SocialAccount(**values)
    session.add(account)
    session.commit()
    return account


def _criteria(category=None, **overrides) -> AccountCriteria:
    values = dict(platform="tiktok", tenant_id="tenant-1", category=category, minimum_quota=1)
    values.update(overrides)
    return AccountCriteria(**values)


def test_reserve_quota_never_exceeds_daily_limit(session, clock) -> None:
    account = _account(session, clock, "tight", daily_limit=2)
    pool = AccountPool(session, clock=clock)

    assert pool.reserve_quota(account.id) is True
    assert pool.reserve_quota(account.id) is True
    assert pool.reserve_quota(account.id) is False

    session.refresh(account)
    assert account.used_today == 2
    assert pool.get_available_quota(account.id) == 0


def test_competing_pools_cannot_oversubscribe(session_factory, clock) -> None:
    with session_factory() as setup:
        account_id = _account(setup, clock, "shared", daily_limit=1).id

    with session_factory() as first_session, session_factory() as second_session:
        first = AccountPool(first_session, clock=clock)
        second = AccountPool(second_session, clock=clock)
        # Both sessions loaded the account while it still had capacity.
        assert first.get_available_quota(account_id) == 1
        assert second.get_available_quota(account_id) == 1

        results = [first.reserve_quota(account_id), second.reserve_quota(account_id)]

    assert sorted(results) == [False, True]
    with session_factory() as check:
        assert check.get(SocialAccount, account_id).used_today == 1


def test_release_quota_is_floored_at_zero(session, clock) -> None:
    account = _account(session, clock, "floor", used_today=1)
    pool = AccountPool(session, clock=clock)

    pool.release_quota(account.id)
    pool.release_quota(account.id)

    session.refresh(account)
    assert account.used_today == 0


def test_daily_reset_happens_once_per_utc_day(session, clock) -> None:
    account = _account(session, clock, "reset", daily_limit=10, used_today=10, last_reset=clock() - timedelta(days=1))
    pool = AccountPool(session, clock=clock)

    assert pool.get_available_quota(account.id) == 10
    assert pool.reserve_quota(account.id) is True
    assert pool.get_available_quota(account.id) == 9

    session.refresh(account)
    assert account.used_today == 1
    assert account.last_reset.date() == clock().date()


def test_scoring_prefers_exact_niche_then_similar(session, clock) -> None:
    _account(session, clock, "music", niche="music")
    similar = _account(session, clock, "news", niche="news")
    exact = _account(session, clock, "finance", niche="finance")
    pool = AccountPool(session, clock=clock)

    assert is_similar_category("news", "finance") is True
    assert pool.select_account(_criteria("finance")).id == exact.id

    pool.disable_account(exact.id, "manual")
    assert pool.select_account(_criteria("finance")).id == similar.id


def test_score_components(session, clock) -> None:
    fresh = _account(session, clock, "fresh", niche="tech", created_at=clock(), used_today=5)
    pool = AccountPool(session, clock=clock)

    # quota 5/10*40 + exact 30 + stability 0 + load 5/10*10
    assert pool.score_account(fresh, "tech") == pytest.approx(55.0)
    # no category requested: neutral 15 points
    assert pool.score_account(fresh, None) == pytest.approx(40.0)
    # mismatched niche earns nothing
    assert pool.score_account(fresh, "food") == pytest.approx(25.0)


def test_more_remaining_quota_wins(session, clock) -> None:
    """Two tech accounts with 3/10 and 8/10 used: the lighter one is chosen."""

    _account(session, clock, "busy", niche="tech", used_today=8)
    light = _account(session, clock, "light", niche="tech", used_today=3)
    pool = AccountPool(session, clock=clock)

    assert pool.select_account(_criteria("tech")).id == light.id


def test_equal_scores_pick_first_created(session, clock) -> None:
    first = _account(session, clock, "first")
    _account(session, clock, "second", created_at=clock() - timedelta(days=45))
    pool = AccountPool(session, clock=clock)

    assert pool.select_account(_criteria()).id == first.id


def test_select_respects_minimum_quota_and_platform(session, clock) -> None:
    _account(session, clock, "nearly-full", used_today=9)
    _account(session, clock, "youtube-only", platform="youtube")
    _account(session, clock, "other-tenant", tenant_id="tenant-2")
    pool = AccountPool(session, clock=clock)

    assert pool.select_account(_criteria(minimum_quota=2)) is None
    assert pool.select_account(_criteria()).username == "nearly-full"
    assert pool.select_account(_criteria(platform="instagram")) is None


def test_select_multiple_accounts_ranks_by_score(session, clock) -> None:
    _account(session, clock, "a", used_today=6)
    b = _account(session, clock, "b", used_today=1)
    c = _account(session, clock, "c", used_today=3)
    pool = AccountPool(session, clock=clock)

    ranked = pool.select_multiple_accounts(_criteria(), 2)

    assert [account.id for account in ranked] == [b.id, c.id]
    assert pool.select_multiple_accounts(_criteria(), 0) == []


def test_total_available_quota_counts_active_accounts(session, clock) -> None:
    _account(session, clock, "one", daily_limit=10, used_today=4)
    _account(session, clock, "two", daily_limit=5, used_today=5)
    _account(session, clock, "off", daily_limit=10, is_active=False)
    pool = AccountPool(session, clock=clock)

    summary = pool.get_total_available_quota("tiktok", "tenant-1")

    assert summary.total_accounts == 3
    assert summary.active_accounts == 2
    assert summary.total_quota == 15
    assert summary.used_quota == 9
    assert summary.available_quota == 6


def test_disabled_accounts_are_not_selected_or_reserved(session, clock) -> None:
    account = _account(session, clock, "flaky")
    pool = AccountPool(session, clock=clock)

    assert pool.disable_account(account.id, "banned by platform") is True
    assert pool.select_account(_criteria()) is None
    assert pool.reserve_quota(account.id) is False
    session.refresh(account)
    assert account.disabled_reason == "banned by platform"

    assert pool.enable_account(account.id) is True
    assert pool.select_account(_criteria()).id == account.id
    assert pool.disable_account("missing", "x") is False


def test_consecutive_failures_auto_disable_account(session, clock) -> None:
    account = _account(session, clock, "failing")
    pool = AccountPool(session, clock=clock, failure_disable_threshold=2)

    pool.record_post_outcome(account.id, success=False, error="token revoked")
    session.refresh(account)
    assert account.is_active is True

    pool.record_post_outcome(account.id, success=True)
    pool.record_post_outcome(account.id, success=False, error="token revoked")
    pool.record_post_outcome(account.id, success=False, error="token revoked")

    session.refresh(account)
    assert account.is_active is False
    assert account.disabled_reason == "2 consecutive posting failures: token revoked"


def test_reset_all_quotas_only_touches_active_accounts(session, clock) -> None:
    active = _account(session, clock, "active", used_today=7)
    inactive = _account(session, clock, "inactive", used_today=7, is_active=False)
    pool = AccountPool(session, clock=clock)

    assert pool.reset_all_quotas() == 1

    session.refresh(active)
    session.refresh(inactive)
    assert active.used_today == 0
    assert inactive.used_today == 7
