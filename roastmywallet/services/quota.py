"""
Monthly upload quota and tier gates.

The counter and its reset date live on the user row. A stale period is
reset before the limit check, and the check and increment run as a single
conditional UPDATE so two concurrent uploads cannot both slip past the limit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from .. import crud, models
from ..config import settings
from ..errors import EntitlementError
from ..utils import month_start, utcnow

logger = logging.getLogger("roastmywallet.services.quota")

WITHIN_PERIOD = "within-period"
STALE_PERIOD = "stale-period"


@dataclass
class QuotaDecision:
    used: int
    limit: Optional[int]  # None means unlimited
    tier: str

    @property
    def persist(self) -> bool:
        return self.tier == models.TIER_PREMIUM


def upload_limit(user: models.User) -> Optional[int]:
    if user.tier == models.TIER_PREMIUM:
        return None
    return settings.free_upload_limit


def period_state(user: models.User, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    reset_date = user.monthly_upload_reset_date
    if reset_date is None or reset_date < month_start(now):
        return STALE_PERIOD
    return WITHIN_PERIOD


def uploads_used(user: models.User, now: Optional[datetime] = None) -> int:
    """Uploads counted in the current month, without writing anything."""
    if period_state(user, now) == STALE_PERIOD:
        return 0
    return user.monthly_upload_count or 0


def admit_upload(db: Session, user: models.User, now: Optional[datetime] = None) -> QuotaDecision:
    """Admit one upload or raise EntitlementError(quota_exceeded).

    Premium uploads are counted too, even though they are never refused.
    """
    now = now or utcnow()
    if period_state(user, now) == STALE_PERIOD:
        if crud.reset_upload_period(db, user.id, month_start(now), now):
            logger.info(f"Reset monthly upload counter for user {user.id}")

    if not crud.claim_upload_slot(db, user.id, settings.free_upload_limit):
        db.refresh(user)
        logger.info(f"User {user.id} hit the free upload limit ({user.monthly_upload_count})")
        raise EntitlementError(
            "You've used your free roast for this month. Upgrade to Premium for unlimited roasts.",
            code=EntitlementError.QUOTA_EXCEEDED,
        )

    db.refresh(user)
    return QuotaDecision(used=user.monthly_upload_count, limit=upload_limit(user), tier=user.tier)


def require_premium(user: models.User, feature: str) -> None:
    if user.tier != models.TIER_PREMIUM:
        raise EntitlementError(
            f"{feature} is a Premium feature. Upgrade to unlock it.",
            code=EntitlementError.PREMIUM_REQUIRED,
        )


def can_generate_annual_report(user: models.User) -> bool:
    return user.tier == models.TIER_PREMIUM or bool(user.has_annual_report)


def require_annual_report(user: models.User) -> None:
    if not can_generate_annual_report(user):
        raise EntitlementError(
            "The annual report is a one-time purchase. Buy it or upgrade to Premium.",
            code=EntitlementError.REPORT_NOT_PURCHASED,
        )
