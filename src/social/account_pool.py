"""Multi-account pool: quota accounting, daily reset and scored selection."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from src.core.config import get_settings
from src.core.logger import get_logger
from src.core.metrics import record_quota_reservation
from src.storage.models import SocialAccount


SUPPORTED_PLATFORMS = ("tiktok", "youtube", "instagram")

SIMILAR_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "finance": ("tech", "news"),
    "tech": ("finance", "gaming"),
    "gaming": ("tech", "entertainment"),
    "fitness": ("wellness", "lifestyle"),
    "luxury": ("lifestyle", "fashion"),
    "music": ("entertainment", "dance"),
    "emotional": ("storytelling", "inspiration"),
    "news": ("finance", "politics"),
}

QUOTA_WEIGHT = 40.0
EXACT_NICHE_POINTS = 30.0
SIMILAR_NICHE_POINTS = 15.0
NEUTRAL_NICHE_POINTS = 15.0
STABILITY_WEIGHT = 20.0
STABILITY_FULL_DAYS = 30.0
LOAD_WEIGHT = 10.0

logger = get_logger("viral.social.account_pool")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_dt(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _start_of_utc_day(value: datetime) -> datetime:
    return datetime.combine(_normalize_dt(value).date(), time.min, tzinfo=timezone.utc)


def is_similar_category(niche: str, category: str) -> bool:
    return category in SIMILAR_CATEGORIES.get(niche, ())


def available_quota(account: SocialAccount) -> int:
    return max(0, int(account.daily_limit) - int(account.used_today))


@dataclass(frozen=True)
class AccountCriteria:
    platform: str
    tenant_id: str
    category: Optional[str] = None
    minimum_quota: int = 1


@dataclass(frozen=True)
class QuotaSummary:
    platform: str
    tenant_id: str
    total_accounts: int
    active_accounts: int
    total_quota: int
    available_quota: int
    used_quota: int


class AccountPool:
    """Account selection and quota mutation for one database session.

    Every quota read first applies the UTC-day reset. Reservation is a
    conditional increment at the storage layer, so concurrent posters can
    never push ``used_today`` past ``daily_limit``.
    """

    def __init__(
        self,
        session: Session,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        failure_disable_threshold: Optional[int] = None,
    ) -> None:
        self._session = session
        self._clock = clock or _utc_now
        self._failure_disable_threshold = (
            failure_disable_threshold
            if failure_disable_threshold is not None
            else get_settings().account_failure_disable_threshold
        )

    def _now(self) -> datetime:
        return _normalize_dt(self._clock())

    def _apply_daily_reset(self, account: SocialAccount, now: datetime) -> SocialAccount:
        if _normalize_dt(account.last_reset).date() == now.date():
            return account

        result = self._session.execute(
            update(SocialAccount)
            .where(
                SocialAccount.id == account.id,
                SocialAccount.last_reset < _start_of_utc_day(now),
            )
            .values(used_today=0, last_reset=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self._session.commit()
        self._session.refresh(account)
        if result.rowcount == 1:
            logger.info("account_quota_daily_reset", account_id=account.id, platform=account.platform)
        return account

    def _accounts(self, platform: str, tenant_id: str, *, active_only: bool = True) -> List[SocialAccount]:
        statement = select(SocialAccount).where(
            SocialAccount.tenant_id == tenant_id,
            SocialAccount.platform == platform.strip().lower(),
        )
        if active_only:
            statement = statement.where(SocialAccount.is_active.is_(True))
        statement = statement.order_by(SocialAccount.created_at.asc(), SocialAccount.id.asc())
        now = self._now()
        return [self._apply_daily_reset(account, now) for account in self._session.scalars(statement).all()]

    def get_available_quota(self, account_id: str) -> int:
        account = self._session.get(SocialAccount, account_id)
        if account is None:
            return 0
        return available_quota(self._apply_daily_reset(account, self._now()))

    def score_account(self, account: SocialAccount, category: Optional[str] = None) -> float:
        limit = int(account.daily_limit)
        if limit <= 0:
            return 0.0
        score = (available_quota(account) / limit) * QUOTA_WEIGHT

        wanted = (category or "").strip().lower()
        niche = (account.niche or "").strip().lower()
        if wanted and niche:
            if niche == wanted:
                score += EXACT_NICHE_POINTS
            elif is_similar_category(niche, wanted):
                score += SIMILAR_NICHE_POINTS
        else:
            score += NEUTRAL_NICHE_POINTS

        age_days = max((self._now() - _normalize_dt(account.created_at)).total_seconds(), 0.0) / 86400
        score += min(age_days / STABILITY_FULL_DAYS, 1.0) * STABILITY_WEIGHT
        score += (1 - int(account.used_today) / limit) * LOAD_WEIGHT
        return score

    def _eligible(self, criteria: AccountCriteria) -> List[SocialAccount]:
        minimum = max(1, criteria.minimum_quota)
        return [
            account
            for account in self._accounts(criteria.platform, criteria.tenant_id)
            if available_quota(account) >= minimum
        ]

    def select_account(self, criteria: AccountCriteria) -> Optional[SocialAccount]:
        eligible = self._eligible(criteria)
        if not eligible:
            logger.info(
                "account_pool_no_capacity",
                platform=criteria.platform,
                tenant_id=criteria.tenant_id,
                minimum_quota=criteria.minimum_quota,
            )
            return None
        # max() keeps the first of equally scored accounts.
        return max(eligible, key=lambda account: self.score_account(account, criteria.category))

    def select_multiple_accounts(self, criteria: AccountCriteria, count: int) -> List[SocialAccount]:
        if count <= 0:
            return []
        eligible = self._eligible(criteria)
        ranked = sorted(eligible, key=lambda account: self.score_account(account, criteria.category), reverse=True)
        return ranked[:count]

    def reserve_quota(self, account_id: str) -> bool:
        account = self._session.get(SocialAccount, account_id)
        if account is None or not account.is_active:
            record_quota_reservation(platform=account.platform if account else "unknown", status="rejected")
            return False
        self._apply_daily_reset(account, self._now())

        result = self._session.execute(
            update(SocialAccount)
            .where(
                SocialAccount.id == account_id,
                SocialAccount.is_active.is_(True),
                SocialAccount.used_today < SocialAccount.daily_limit,
            )
            .values(used_today=SocialAccount.used_today + 1)
            .execution_options(synchronize_session=False)
        )
        self._session.commit()
        self._session.refresh(account)

        reserved = result.rowcount == 1
        record_quota_reservation(platform=account.platform, status="reserved" if reserved else "rejected")
        logger.info(
            "account_quota_reserved" if reserved else "account_quota_reservation_rejected",
            account_id=account_id,
            platform=account.platform,
            used_today=account.used_today,
            daily_limit=account.daily_limit,
        )
        return reserved

    def release_quota(self, account_id: str) -> None:
        self._session.execute(
            update(SocialAccount)
            .where(SocialAccount.id == account_id, SocialAccount.used_today > 0)
            .values(used_today=SocialAccount.used_today - 1)
            .execution_options(synchronize_session=False)
        )
        self._session.commit()
        account = self._session.get(SocialAccount, account_id)
        if account is not None:
            self._session.refresh(account)
            record_quota_reservation(platform=account.platform, status="released")
        logger.info("account_quota_released", account_id=account_id)

    def get_total_available_quota(self, platform: str, tenant_id: str) -> QuotaSummary:
        accounts = self._accounts(platform, tenant_id, active_only=False)
        active = [account for account in accounts if account.is_active]
        return QuotaSummary(
            platform=platform,
            tenant_id=tenant_id,
            total_accounts=len(accounts),
            active_accounts=len(active),
            total_quota=sum(int(account.daily_limit) for account in active),
            available_quota=sum(available_quota(account) for account in active),
            used_quota=sum(int(account.used_today) for account in active),
        )

    def disable_account(self, account_id: str, reason: str) -> bool:
        account = self._session.get(SocialAccount, account_id)
        if account is None:
            return False
        now = self._now()
        account.is_active = False
        account.disabled_reason = (reason or "disabled")[:255]
        account.disabled_at = now
        account.updated_at = now
        self._session.commit()
        logger.warning("account_disabled", account_id=account_id, platform=account.platform, reason=reason)
        return True

    def enable_account(self, account_id: str) -> bool:
        account = self._session.get(SocialAccount, account_id)
        if account is None:
            return False
        account.is_active = True
        account.disabled_reason = None
        account.disabled_at = None
        account.consecutive_failures = 0
        account.updated_at = self._now()
        self._session.commit()
        logger.info("account_enabled", account_id=account_id, platform=account.platform)
        return True

    def reset_all_quotas(self) -> int:
        now = self._now()
        result = self._session.execute(
            update(SocialAccount)
            .where(SocialAccount.is_active.is_(True))
            .values(used_today=0, last_reset=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self._session.commit()
        self._session.expire_all()
        logger.info("account_quotas_reset", accounts=result.rowcount)
        return int(result.rowcount or 0)

    def record_post_outcome(self, account_id: str, *, success: bool, error: Optional[str] = None) -> None:
        """Track consecutive failures and deactivate accounts that keep failing."""

        account = self._session.get(SocialAccount, account_id)
        if account is None:
            return
        if success:
            if account.consecutive_failures:
                account.consecutive_failures = 0
                self._session.commit()
            return

        account.consecutive_failures = int(account.consecutive_failures) + 1
        self._session.commit()
        if account.consecutive_failures >= self._failure_disable_threshold:
            self.disable_account(
                account_id,
                f"{account.consecutive_failures} consecutive posting failures: {error or 'unknown error'}",
            )
