"""
careermentor/features/credits/gate.py

Credit gate: may this user start a new analysis?

can_create_analysis() is a display-grade read. consume_analysis_credit()
is the authoritative check at creation time and must be called before an
analysis is actually started.
"""

import logging
import threading
import time
from typing import Dict, Optional, Tuple

from careermentor.features.entitlements import notifications
from careermentor.features.entitlements.service import (
    get_profile,
    get_remaining_analyses as _get_remaining_analyses,
    consume_analysis_credit as _consume_analysis_credit,
)
from careermentor.features.plans.catalog import PlanCatalog
from careermentor.models.entitlement import EntitlementRecord, UNLIMITED_CREDITS

logger = logging.getLogger(__name__)

SNAPSHOT_MAX_AGE_SECONDS = 30.0


def has_credits(credits: int) -> bool:
    """-1 is unlimited; any positive balance allows one more analysis."""
    return credits == UNLIMITED_CREDITS or credits > 0


def can_create_analysis(user_id: str, catalog: PlanCatalog) -> bool:
    """Read the current record; a user without one is a new free user (no row is created)."""
    record = get_profile(user_id)
    credits = record.analysis_credits if record else catalog.free_credits
    return has_credits(credits)


def consume_analysis_credit(user_id: str, catalog: PlanCatalog) -> bool:
    allowed = _consume_analysis_credit(user_id, free_credits=catalog.free_credits)
    if not allowed:
        logger.info(f"[credits] analysis denied for {user_id}: no credits remaining")
    return allowed


def get_remaining_analyses(user_id: str, catalog: PlanCatalog) -> int:
    return _get_remaining_analyses(user_id, free_credits=catalog.free_credits)


class CreditGate:
    """
    Credit gate with a per-user snapshot cache.

    The snapshot is dropped whenever the store publishes a change for that
    user, so the next check re-reads. A read that overlaps a change is
    returned but not cached.

    Notifications are in-process only: a write made by another worker
    process is never heard here. Snapshots therefore also expire after
    max_age_seconds. Call close() to stop listening.
    """

    def __init__(self, catalog: PlanCatalog, max_age_seconds: float = SNAPSHOT_MAX_AGE_SECONDS):
        self.catalog = catalog
        self.max_age_seconds = max_age_seconds
        self._cache: Dict[str, Tuple[EntitlementRecord, float]] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._token: Optional[int] = notifications.subscribe(self._on_profile_change)

    def _on_profile_change(self, user_id: str, record: Optional[EntitlementRecord]) -> None:
        with self._lock:
            self._generations[user_id] = self._generations.get(user_id, 0) + 1
            self._cache.pop(user_id, None)

    def snapshot(self, user_id: str) -> Optional[EntitlementRecord]:
        with self._lock:
            cached = self._cache.get(user_id)
            if cached is not None and time.monotonic() - cached[1] < self.max_age_seconds:
                return cached[0]
            generation = self._generations.get(user_id, 0)

        record = get_profile(user_id)

        if record is not None:
            with self._lock:
                # A change published during the read makes this record stale
                if self._generations.get(user_id, 0) == generation:
                    self._cache[user_id] = (record, time.monotonic())
        return record

    def can_create_analysis(self, user_id: str) -> bool:
        record = self.snapshot(user_id)
        credits = record.analysis_credits if record else self.catalog.free_credits
        return has_credits(credits)

    def consume(self, user_id: str) -> bool:
        """Authoritative check-and-spend; bypasses the snapshot."""
        return consume_analysis_credit(user_id, self.catalog)

    def invalidate(self, user_id: Optional[str] = None) -> None:
        with self._lock:
            if user_id is None:
                self._cache.clear()
            else:
                self._cache.pop(user_id, None)

    def close(self) -> None:
        if self._token is not None:
            notifications.unsubscribe(self._token)
            self._token = None
        self.invalidate()
