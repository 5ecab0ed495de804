"""
Tests for cost, rate and circuit-breaker admission gates.
"""

import os
import shutil
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from meal_guard.config.loader import PipelineConfig
from meal_guard.core.admission import (
    AdmissionController,
    AdmissionGate,
    start_of_utc_day,
)
from meal_guard.storage.models import UsageLedgerEntry
from meal_guard.storage.repository import MealGuardRepository

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


class TestStartOfUtcDay:
    def test_aware_timestamp(self):
        assert start_of_utc_day(NOW) == datetime(2026, 3, 14, tzinfo=timezone.utc)

    def test_other_timezone_converted_first(self):
        """23:30 at UTC-5 is already the next UTC day."""
        local = datetime(2026, 3, 14, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        assert start_of_utc_day(local) == datetime(2026, 3, 15, tzinfo=timezone.utc)

    def test_naive_treated_as_utc(self):
        assert start_of_utc_day(datetime(2026, 3, 14, 8)) == datetime(2026, 3, 14, tzinfo=timezone.utc)


class TestAdmissionController:
    """Test gates against a real ledger."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.repository = MealGuardRepository(os.path.join(self.temp_dir, "test.db"))
        self.repository.initialize_schema()
        self.config = PipelineConfig()
        self.controller = AdmissionController(self.repository, self.config)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _log(self, user_id="u1", cost=0.0, timestamp=NOW):
        self.repository.insert_usage_entry(UsageLedgerEntry(
            timestamp=timestamp, user_id=user_id, cost=cost, meal_type="dinner"
        ))

    def test_fresh_user_admitted(self):
        decision = self.controller.admit("u1", now=NOW)
        assert decision.allowed
        assert decision.gate is None

    def test_free_tier_denied_at_ceiling(self):
        """Spend equal to the ceiling denies."""
        self._log(cost=0.01)
        decision = self.controller.check_cost_limits("u1", now=NOW)
        assert not decision.allowed
        assert decision.gate == AdmissionGate.COST
        assert decision.cost_protected
        assert decision.limit == 0.01

    def test_free_tier_denied_above_ceiling(self):
        self._log(cost=0.015)
        assert not self.controller.check_cost_limits("u1", now=NOW).allowed

    def test_free_tier_admitted_below_ceiling(self):
        self._log(cost=0.0099)
        decision = self.controller.check_cost_limits("u1", now=NOW)
        assert decision.allowed
        assert abs(decision.observed - 0.0099) < 1e-9

    def test_premium_ceiling_applies_to_premium_users(self):
        self._log(cost=0.02)
        assert not self.controller.check_cost_limits("u1", premium=False, now=NOW).allowed
        assert self.controller.check_cost_limits("u1", premium=True, now=NOW).allowed

    def test_yesterdays_spend_ignored(self):
        self._log(cost=0.05, timestamp=NOW - timedelta(days=1))
        assert self.controller.check_cost_limits("u1", now=NOW).allowed

    def test_other_users_spend_ignored(self):
        self._log(user_id="u2", cost=0.05)
        assert self.controller.check_cost_limits("u1", now=NOW).allowed

    def test_rate_limit_denies_at_threshold(self):
        """Ten requests in the trailing hour deny the eleventh."""
        for minute in range(10):
            self._log(timestamp=NOW - timedelta(minutes=minute))
        decision = self.controller.check_rate_limit("u1", now=NOW)
        assert not decision.allowed
        assert decision.gate == AdmissionGate.RATE
        assert not decision.cost_protected
        assert decision.observed == 10

    def test_rate_limit_admits_below_threshold(self):
        for minute in range(9):
            self._log(timestamp=NOW - timedelta(minutes=minute))
        assert self.controller.check_rate_limit("u1", now=NOW).allowed

    def test_rate_window_is_trailing(self):
        for minute in range(10):
            self._log(timestamp=NOW - timedelta(minutes=61 + minute))
        assert self.controller.check_rate_limit("u1", now=NOW).allowed

    def test_circuit_breaker_uses_all_users(self):
        """A fleet-wide spend past the breaker stops a fresh user."""
        self._log(user_id="u2", cost=1.5)
        self._log(user_id="u3", cost=0.5)
        decision = self.controller.admit("u1", now=NOW)
        assert not decision.allowed
        assert decision.gate == AdmissionGate.CIRCUIT_BREAKER
        assert decision.cost_protected

    def test_cost_gate_checked_before_rate_gate(self):
        for minute in range(10):
            self._log(cost=0.002, timestamp=NOW - timedelta(minutes=minute))
        decision = self.controller.admit("u1", now=NOW)
        assert decision.gate == AdmissionGate.COST

    def test_denial_messages_are_user_facing(self):
        self._log(cost=0.01)
        decision = self.controller.check_cost_limits("u1", now=NOW)
        assert "limit" in decision.message
        assert "sqlite" not in decision.message.lower()


class TestAdmissionFailsOpen:
    """Ledger read failures allow the request."""

    def setup_method(self):
        self.repository = Mock()
        self.repository.sum_user_cost_since.side_effect = sqlite3.OperationalError("database is locked")
        self.repository.count_user_entries_since.side_effect = sqlite3.OperationalError("database is locked")
        self.repository.sum_total_cost_since.side_effect = OSError("disk gone")
        self.controller = AdmissionController(self.repository, PipelineConfig())

    def test_cost_gate_fails_open(self):
        decision = self.controller.check_cost_limits("u1", now=NOW)
        assert decision.allowed
        assert decision.failed_open

    def test_rate_gate_fails_open(self):
        decision = self.controller.check_rate_limit("u1", now=NOW)
        assert decision.allowed
        assert decision.failed_open

    def test_circuit_breaker_fails_open(self):
        decision = self.controller.check_circuit_breaker(now=NOW)
        assert decision.allowed
        assert decision.failed_open

    def test_admit_allows_when_every_gate_fails(self):
        assert self.controller.admit("u1", now=NOW).allowed
