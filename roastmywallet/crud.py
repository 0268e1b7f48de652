# crud.py

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .utils import utcnow

logger = logging.getLogger("roastmywallet.crud")

PROFILE_FIELDS = ("email", "first_name", "last_name", "profile_image_url")


def get_user(db: Session, user_id: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_billing_customer(db: Session, customer_id: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.billing_customer_id == customer_id).first()


def upsert_user(db: Session, user_id: str, **profile) -> models.User:
    """Insert the user if absent, otherwise refresh profile fields only.

    Tier, quota and billing columns are never touched here. Concurrent first
    requests for the same user race on the insert; the loser falls back to
    the update path.
    """
    profile = {key: value for key, value in profile.items() if key in PROFILE_FIELDS and value is not None}
    db_user = get_user(db, user_id)
    if db_user is not None:
        return _refresh_profile(db, db_user, profile)

    db_user = models.User(
        id=user_id,
        tier=models.TIER_FREE,
        monthly_upload_count=0,
        has_annual_report=False,
        **profile,
    )
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"User {user_id} was created by a concurrent request")
        return _refresh_profile(db, get_user(db, user_id), profile)
    db.refresh(db_user)
    return db_user


def _refresh_profile(db: Session, db_user: models.User, profile: dict) -> models.User:
    changed = False
    for key, value in profile.items():
        if getattr(db_user, key) != value:
            setattr(db_user, key, value)
            changed = True
    if not changed:
        return db_user
    db_user.updated_at = utcnow()
    db.commit()
    db.refresh(db_user)
    return db_user


def reset_upload_period(db: Session, user_id: str, period_start: datetime, now: datetime) -> bool:
    """Zero the counter if the last reset happened before `period_start`."""
    result = db.execute(
        update(models.User)
        .where(
            models.User.id == user_id,
            or_(
                models.User.monthly_upload_reset_date.is_(None),
                models.User.monthly_upload_reset_date < period_start,
            ),
        )
        .values(monthly_upload_count=0, monthly_upload_reset_date=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount > 0


def claim_upload_slot(db: Session, user_id: str, free_limit: int) -> bool:
    """Check and increment the counter in one statement.

    Premium users always get a slot; free users only while under the limit.
    """
    result = db.execute(
        update(models.User)
        .where(
            models.User.id == user_id,
            or_(
                models.User.tier == models.TIER_PREMIUM,
                models.User.monthly_upload_count < free_limit,
            ),
        )
        .values(monthly_upload_count=models.User.monthly_upload_count + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount > 0


def update_billing(db: Session, db_user: models.User, **fields) -> models.User:
    for key, value in fields.items():
        setattr(db_user, key, value)
    db_user.updated_at = utcnow()
    db.commit()
    db.refresh(db_user)
    return db_user


def create_expense(db: Session, user_id: str, amount: int, description: str, date: datetime,
                   category: str, roast: str, source: str) -> models.Expense:
    expense = models.Expense(
        user_id=user_id,
        amount=amount,
        description=description,
        date=date,
        category=category,
        roast=roast,
        source=source,
    )
    db.add(expense)
    db.commit()
    db.refresh(expense)
    return expense


def list_expenses(db: Session, user_id: str) -> List[models.Expense]:
    return (
        db.query(models.Expense)
        .filter(models.Expense.user_id == user_id)
        .order_by(models.Expense.date.desc(), models.Expense.id.desc())
        .all()
    )


def delete_expense(db: Session, user_id: str, expense_id: int) -> bool:
    """Delete scoped by owner. Someone else's id is a silent no-op."""
    deleted = (
        db.query(models.Expense)
        .filter(models.Expense.id == expense_id, models.Expense.user_id == user_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted > 0
