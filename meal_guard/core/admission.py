"""
Admission control for recipe generation.

Pre-flight gates that must all pass before any provider cost is incurred.

Gate Order:
1. Daily cost ceiling - per user, per tier, since UTC midnight
2. Rate limit - per user, trailing window
3. Circuit breaker - all users, since UTC midnight

Counters are never held in process. Every check is a fresh query over the
append-only usage ledger, so limits hold across restarts and instances.

Failure policy: every gate FAILS OPEN. If the ledger cannot be read the
request is allowed and a warning is logged. This trades strictness for
availability on purpose and must not be changed without product sign-off.

Known limitation: the checks and the later ledger write are not one
transaction. Two concurrent requests from the same user can both pass before
either is logged, overshooting the ceiling by at most one recipe each. This
overshoot is accepted.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from meal_guard.config.loader import PipelineConfig
from meal_guard.storage.repository import MealGuardRepository

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (sqlite3.Error, OSError)


class AdmissionGate(Enum):
    """Which check produced a decision."""
    COST = "cost"
    RATE = "rate"
    CIRCUIT_BREAKER = "circuit_breaker"


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of one gate, or of the full admission pass."""
    allowed: bool
    gate: Optional[AdmissionGate] = None
    message: Optional[str] = None
    observed: float = 0.0
    limit: float = 0.0
    failed_open: bool = False

    @property
    def cost_protected(self) -> bool:
        """True when a spending ceiling, not a rate limit, denied the request."""
        return not self.allowed and self.gate in (AdmissionGate.COST, AdmissionGate.CIRCUIT_BREAKER)


def start_of_utc_day(now: datetime) -> datetime:
    """Midnight UTC for the day containing `now`."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdmissionController:
    """Cost and rate gates backed by the usage ledger."""

    def __init__(self, repository: MealGuardRepository, config: PipelineConfig):
        self.repository = repository
        self.config = config

    def check_cost_limits(
        self,
        user_id: str,
        premium: bool = False,
        now: Optional[datetime] = None
    ) -> AdmissionDecision:
        """Deny once today's logged cost reaches the tier's daily ceiling."""
        now = now or _utcnow()
        ceiling = self.config.daily_ceiling(premium)
        try:
            spent = self.repository.sum_user_cost_since(user_id, start_of_utc_day(now))
        except _STORAGE_ERRORS as e:
            logger.warning("Cost limit check failed for %s, allowing request: %s", user_id, e)
            return AdmissionDecision(allowed=True, gate=AdmissionGate.COST, limit=ceiling, failed_open=True)

        if spent >= ceiling:
            logger.info("Daily cost ceiling reached for %s: %.6f >= %.6f", user_id, spent, ceiling)
            message = (
                "You've reached today's recipe generation limit. "
                + ("Your limit resets at midnight UTC." if premium
                   else "Upgrade for more daily recipes, or try again tomorrow.")
            )
            return AdmissionDecision(
                allowed=False, gate=AdmissionGate.COST, message=message,
                observed=spent, limit=ceiling
            )
        return AdmissionDecision(allowed=True, gate=AdmissionGate.COST, observed=spent, limit=ceiling)

    def check_rate_limit(self, user_id: str, now: Optional[datetime] = None) -> AdmissionDecision:
        """Deny once the trailing window holds `rate_limit_threshold` requests."""
        now = now or _utcnow()
        threshold = self.config.rate_limit_threshold
        window_start = now - timedelta(minutes=self.config.rate_window_minutes)
        try:
            count = self.repository.count_user_entries_since(user_id, window_start)
        except _STORAGE_ERRORS as e:
            logger.warning("Rate limit check failed for %s, allowing request: %s", user_id, e)
            return AdmissionDecision(allowed=True, gate=AdmissionGate.RATE, limit=threshold, failed_open=True)

        if count >= threshold:
            logger.info("Rate limit reached for %s: %d requests in %d minutes",
                        user_id, count, self.config.rate_window_minutes)
            return AdmissionDecision(
                allowed=False, gate=AdmissionGate.RATE,
                message="You're generating recipes very quickly. Please wait a little while and try again.",
                observed=count, limit=threshold
            )
        return AdmissionDecision(allowed=True, gate=AdmissionGate.RATE, observed=count, limit=threshold)

    def check_circuit_breaker(self, now: Optional[datetime] = None) -> AdmissionDecision:
        """Deny everyone once today's total spend reaches the absolute ceiling."""
        now = now or _utcnow()
        ceiling = self.config.circuit_breaker_cost
        try:
            spent = self.repository.sum_total_cost_since(start_of_utc_day(now))
        except _STORAGE_ERRORS as e:
            logger.warning("Circuit breaker check failed, allowing request: %s", e)
            return AdmissionDecision(
                allowed=True, gate=AdmissionGate.CIRCUIT_BREAKER, limit=ceiling, failed_open=True
            )

        if spent >= ceiling:
            logger.error("Circuit breaker open: total spend %.4f >= %.4f", spent, ceiling)
            return AdmissionDecision(
                allowed=False, gate=AdmissionGate.CIRCUIT_BREAKER,
                message="Recipe generation is paused for today. Please try again tomorrow.",
                observed=spent, limit=ceiling
            )
        return AdmissionDecision(
            allowed=True, gate=AdmissionGate.CIRCUIT_BREAKER, observed=spent, limit=ceiling
        )

    def admit(
        self,
        user_id: str,
        premium: bool = False,
        now: Optional[datetime] = None
    ) -> AdmissionDecision:
        """Run every gate in order and return the first denial, if any."""
        now = now or _utcnow()
        decision = self.check_cost_limits(user_id, premium=premium, now=now)
        if not decision.allowed:
            return decision
        decision = self.check_rate_limit(user_id, now=now)
        if not decision.allowed:
            return decision
        decision = self.check_circuit_breaker(now=now)
        if not decision.allowed:
            return decision
        return AdmissionDecision(allowed=True)
