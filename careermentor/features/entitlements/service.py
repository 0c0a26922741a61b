"""
careermentor/features/entitlements/service.py

Entitlement store: the persisted per-user record in user_profiles.

Handles:
- First-use default assignment (free tier, free credit count)
- Plan writes from webhooks (role + credits + subscription fields in one UPDATE)
- Billing customer linkage
- Atomic credit consumption (decrement only while positive)

Every committed write publishes a profile-change notification.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
import logging
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from careermentor.core.database import get_db_session, user_profiles
from careermentor.core.errors import NotFoundError, StoreWriteError
from careermentor.features.entitlements import notifications
from careermentor.models.entitlement import EntitlementRecord, Role, UNLIMITED_CREDITS


logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _row_to_record(row) -> EntitlementRecord:
    return EntitlementRecord(
        user_id=row.user_id,
        role=Role(row.role),
        billing_customer_id=row.stripe_customer_id,
        subscription_status=row.subscription_status,
        subscription_period_end=_as_utc(row.subscription_period_end),
        analysis_credits=row.analysis_credits,
        updated_at=_as_utc(row.updated_at),
    )


def _read(session, user_id: str) -> Optional[EntitlementRecord]:
    row = session.execute(
        select(user_profiles).where(user_profiles.c.user_id == user_id)
    ).first()
    return _row_to_record(row) if row else None


def get_profile(user_id: str) -> Optional[EntitlementRecord]:
    """Return the current record, or None if the user has none yet."""
    with get_db_session() as session:
        return _read(session, user_id)


def get_or_create_profile(user_id: str, *, free_credits: int) -> EntitlementRecord:
    """
    Return the user's record, creating the free default on first use.

    A concurrent create that wins the insert race is treated as success.
    """
    existing = get_profile(user_id)
    if existing:
        return existing

    try:
        with get_db_session() as session:
            now = _now()
            session.execute(
                insert(user_profiles).values(
                    user_id=user_id,
                    role=Role.FREE.value,
                    analysis_credits=free_credits,
                    created_at=now,
                    updated_at=now,
                )
            )
        logger.info(f"[entitlements] created default profile for {user_id}")
    except IntegrityError:
        logger.debug(f"[entitlements] profile for {user_id} created concurrently")
    except SQLAlchemyError as e:
        raise StoreWriteError(f"Failed to create profile for {user_id}: {e}") from e

    record = get_profile(user_id)
    if record is None:
        raise StoreWriteError(f"Profile for {user_id} missing after create")
    notifications.publish(user_id, record)
    return record


def _upsert(user_id: str, values: Dict[str, Any], insert_defaults: Dict[str, Any]) -> EntitlementRecord:
    """
    Overwrite the given columns in a single UPDATE; insert the row if absent.

    Last write wins. If an insert races another insert, fall back to the UPDATE.
    """
    now = _now()
    values = {**values, "updated_at": now}
    try:
        with get_db_session() as session:
            result = session.execute(
                update(user_profiles).where(user_profiles.c.user_id == user_id).values(**values)
            )
            updated = result.rowcount
        if not updated:
            try:
                with get_db_session() as session:
                    session.execute(
                        insert(user_profiles).values(
                            user_id=user_id, created_at=now, **{**insert_defaults, **values}
                        )
                    )
            except IntegrityError:
                with get_db_session() as session:
                    session.execute(
                        update(user_profiles).where(user_profiles.c.user_id == user_id).values(**values)
                    )
        with get_db_session() as session:
            record = _read(session, user_id)
    except SQLAlchemyError as e:
        raise StoreWriteError(f"Failed to write profile for {user_id}: {e}") from e

    notifications.publish(user_id, record)
    return record


def apply_plan(
    user_id: str,
    *,
    role: Role,
    analysis_credits: int,
    subscription_status: Optional[str],
    subscription_period_end: Optional[datetime],
) -> EntitlementRecord:
    """Write tier, credits and subscription fields together (pure overwrite, idempotent)."""
    return _upsert(
        user_id,
        {
            "role": role.value,
            "analysis_credits": analysis_credits,
            "subscription_status": subscription_status,
            "subscription_period_end": subscription_period_end,
        },
        insert_defaults={},
    )


def reset_to_free(user_id: str, *, free_credits: int) -> EntitlementRecord:
    """Cancellation: free tier, status canceled, period end cleared, fixed free credits."""
    return apply_plan(
        user_id,
        role=Role.FREE,
        analysis_credits=free_credits,
        subscription_status="canceled",
        subscription_period_end=None,
    )


def set_subscription_status(user_id: str, status: str, *, free_credits: int) -> EntitlementRecord:
    """Overwrite only the status; role and credits are untouched."""
    return _upsert(
        user_id,
        {"subscription_status": status},
        insert_defaults={"role": Role.FREE.value, "analysis_credits": free_credits},
    )


def set_billing_customer_id(user_id: str, customer_id: str, *, free_credits: int) -> EntitlementRecord:
    return _upsert(
        user_id,
        {"stripe_customer_id": customer_id},
        insert_defaults={"role": Role.FREE.value, "analysis_credits": free_credits},
    )


def set_analysis_credits(user_id: str, credits: int) -> EntitlementRecord:
    """Admin override of the credit balance. The user must already exist."""
    if credits < UNLIMITED_CREDITS:
        raise ValueError("credits must be >= 0 or -1 (unlimited)")
    try:
        with get_db_session() as session:
            result = session.execute(
                update(user_profiles)
                .where(user_profiles.c.user_id == user_id)
                .values(analysis_credits=credits, updated_at=_now())
            )
            if not result.rowcount:
                raise NotFoundError(f"No profile for user {user_id}")
            record = _read(session, user_id)
    except SQLAlchemyError as e:
        raise StoreWriteError(f"Failed to set credits for {user_id}: {e}") from e

    notifications.publish(user_id, record)
    return record


def consume_analysis_credit(user_id: str, *, free_credits: int) -> bool:
    """
    Spend one analysis credit if the user has one.

    Single conditional UPDATE (credits > 0), so concurrent consumers can never
    drive the balance negative. Unlimited users pass without a decrement.
    """
    try:
        with get_db_session() as session:
            result = session.execute(
                update(user_profiles)
                .where(user_profiles.c.user_id == user_id)
                .where(user_profiles.c.analysis_credits > 0)
                .values(
                    analysis_credits=user_profiles.c.analysis_credits - 1,
                    updated_at=_now(),
                )
            )
            consumed = bool(result.rowcount)
            record = _read(session, user_id)
    except SQLAlchemyError as e:
        raise StoreWriteError(f"Failed to consume credit for {user_id}: {e}") from e

    if consumed:
        notifications.publish(user_id, record)
        logger.info(f"[entitlements] credit consumed for {user_id}, remaining={record.analysis_credits}")
        return True

    if record is None:
        # First use: assign the free default, then try once more
        get_or_create_profile(user_id, free_credits=free_credits)
        return consume_analysis_credit(user_id, free_credits=free_credits) if free_credits else False

    return record.is_unlimited


def get_remaining_analyses(user_id: str, *, free_credits: int) -> int:
    """Remaining analyses (-1 = unlimited). Users without a record report the free default."""
    record = get_profile(user_id)
    if record is None:
        return free_credits
    return record.analysis_credits
