"""Token usage accounting against the user's subscription allowance."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .errors import QuotaExceededError, UsageTrackingError
from .stores.base import RecordStore, RecordStoreError

logger = logging.getLogger(__name__)

SUBSCRIPTIONS = "subscriptions"


@dataclass(slots=True)
class TokenUsage:
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def percentage(self) -> float:
        if self.limit <= 0:
            return 100.0
        return min(100.0, self.used / self.limit * 100)


class UsageTracker(ABC):
    @abstractmethod
    async def track(self, user_id: Optional[str], token_count: int) -> None:
        """Record ``token_count`` tokens for the user or raise a usage error."""

    async def usage(self, user_id: Optional[str]) -> Optional[TokenUsage]:
        return None


class NullUsageTracker(UsageTracker):
    """Tracker used when accounting is disabled."""

    async def track(self, user_id: Optional[str], token_count: int) -> None:
        return None


class SubscriptionUsageTracker(UsageTracker):
    """Charges tokens to the ``subscriptions`` row of the user.

    Usage is rejected when the user has no subscription, when it is inactive,
    or when the new total would reach the limit.
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def _subscription(self, user_id: str) -> Optional[dict]:
        rows = await self._store.select(SUBSCRIPTIONS, {"user_id": user_id})
        return rows[0] if rows else None

    async def track(self, user_id: Optional[str], token_count: int) -> None:
        if not user_id:
            raise UsageTrackingError("No subscription found. Please subscribe to use AI features.")

        subscription = await self._subscription(user_id)
        if subscription is None:
            raise UsageTrackingError("No subscription found. Please subscribe to use AI features.")
        if not subscription.get("active"):
            raise UsageTrackingError("Your subscription is not active. Please check your payment status.")

        used = int(subscription.get("tokens_used") or 0)
        limit = int(subscription.get("tokens_limit") or 0)
        new_total = used + max(int(token_count), 0)
        if new_total >= limit:
            logger.warning(
                "Token limit exceeded",
                extra={"user_id": user_id, "tokens_used": used, "tokens_limit": limit},
            )
            raise QuotaExceededError(
                f"Token limit exceeded. You have used {used} of {limit} tokens. "
                "Your limit will reset on your next billing cycle."
            )

        try:
            await self._store.update(
                SUBSCRIPTIONS,
                {"user_id": user_id},
                {"tokens_used": new_total, "updated_at": datetime.now(timezone.utc)},
            )
        except RecordStoreError as exc:
            logger.error("Failed to record token usage", extra={"user_id": user_id}, exc_info=True)
            raise UsageTrackingError("Failed to track token usage") from exc

    async def usage(self, user_id: Optional[str]) -> Optional[TokenUsage]:
        if not user_id:
            return None
        subscription = await self._subscription(user_id)
        if subscription is None:
            return None
        return TokenUsage(
            used=int(subscription.get("tokens_used") or 0),
            limit=int(subscription.get("tokens_limit") or 0),
        )
