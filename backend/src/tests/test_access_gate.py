"""
Tests for the request-time add-on access gate.

Covers ordering (prerequisites before the add-on's own leniency), the
read/write asymmetry during grace, the read-only fallback for lapsed
add-ons and the deny codes surfaced to clients.
"""

from datetime import timedelta

import pytest

from src.entitlements.gate import AccessGate, GatePolicy, grace_write_message
from src.entitlements.models import AccessOutcome, EntitlementState, EntitlementVerdict, ReasonCode
from src.entitlements.resolver import EntitlementResolver
from src.models.tenant_addon import InstallStatus, BillingStatus


@pytest.fixture
def gate(db_session):
    return AccessGate(EntitlementResolver(db_session))


@pytest.fixture
def payroll_in_grace(make_addon, tenant_id, now):
    paid_until = now - timedelta(days=1)
    return make_addon(
        tenant_id, "payroll",
        billing_status=BillingStatus.GRACE_PERIOD,
        paid_until=paid_until,
        grace_until=paid_until + timedelta(days=3),
    )


@pytest.fixture
def hrms_active(make_addon, tenant_id, now):
    return make_addon(tenant_id, "hrms", paid_until=now + timedelta(days=30))


class TestGateOrdering:

    def test_missing_dependency_denies_before_grace(self, gate, payroll_in_grace, tenant_id, now):
        decision = gate.evaluate(
            tenant_id, "payroll", "GET",
            GatePolicy(allow_grace_for_reads=True),
            now,
        )

        assert decision.outcome == AccessOutcome.DENY
        assert decision.code == ReasonCode.ADDON_DEPENDENCY_MISSING
        assert decision.dependency == "hrms"
        assert decision.message == "This feature requires 'hrms' add-on to be installed first."

    def test_expired_dependency(self, gate, make_addon, tenant_id, now):
        make_addon(tenant_id, "payroll", paid_until=now + timedelta(days=30))
        make_addon(
            tenant_id, "hrms",
            billing_status=BillingStatus.EXPIRED,
            paid_until=now - timedelta(days=30),
        )

        decision = gate.evaluate(tenant_id, "payroll", "GET", now=now)

        assert decision.outcome == AccessOutcome.DENY
        assert decision.code == ReasonCode.ADDON_DEPENDENCY_EXPIRED
        assert decision.message.startswith("Required add-on 'hrms' has expired.")

    def test_dependencies_can_be_skipped(self, gate, make_addon, tenant_id, now):
        make_addon(tenant_id, "payroll", paid_until=now + timedelta(days=30))

        decision = gate.evaluate(
            tenant_id, "payroll", "POST",
            GatePolicy(enforce_dependencies=False),
            now,
        )

        assert decision.outcome == AccessOutcome.ALLOW

    def test_route_level_dependencies(self, gate, make_addon, tenant_id, now):
        make_addon(tenant_id, "hrms", paid_until=now + timedelta(days=30))

        decision = gate.evaluate(
            tenant_id, "hrms", "GET",
            GatePolicy(dependencies=("crm",)),
            now,
        )

        assert decision.outcome == AccessOutcome.DENY
        assert decision.dependency == "crm"

    def test_satisfied_dependency_does_not_grant(self, gate, hrms_active, tenant_id, now):
        decision = gate.evaluate(tenant_id, "payroll", "GET", now=now)

        assert decision.outcome == AccessOutcome.DENY
        assert decision.code == ReasonCode.ADDON_NOT_INSTALLED


class TestReadWriteAsymmetry:

    @pytest.mark.parametrize("method", ["GET", "HEAD", "get"])
    def test_reads_allowed_during_grace(self, gate, payroll_in_grace, hrms_active, tenant_id, now, method):
        decision = gate.evaluate(
            tenant_id, "payroll", method,
            GatePolicy(allow_grace_for_reads=True),
            now,
        )

        assert decision.outcome == AccessOutcome.ALLOW
        assert decision.verdict.state == EntitlementState.GRACE

    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE"])
    def test_writes_denied_during_grace(self, gate, payroll_in_grace, hrms_active, tenant_id, now, method):
        decision = gate.evaluate(
            tenant_id, "payroll", method,
            GatePolicy(allow_grace_for_reads=True),
            now,
        )

        assert decision.outcome == AccessOutcome.DENY
        assert decision.code == ReasonCode.ADDON_EXPIRED
        assert decision.message == grace_write_message("payroll")

    def test_writes_allowed_during_grace_by_default(self, gate, payroll_in_grace, hrms_active, tenant_id, now):
        decision = gate.evaluate(tenant_id, "payroll", "POST", now=now)

        assert decision.outcome == AccessOutcome.ALLOW


class TestReadOnlyFallback:

    def _expired(self):
        return EntitlementVerdict(
            addon_code="payroll",
            entitled=False,
            state=EntitlementState.EXPIRED,
            reason_code=ReasonCode.ADDON_EXPIRED,
            message="Subscription has expired. Renew to continue.",
        )

    def test_reads_become_read_only(self, gate):
        policy = GatePolicy(read_only_fallback=lambda tenant_id, verdict: "Renew to edit")

        decision = gate.evaluate_verdict("tenant_123", "payroll", self._expired(), "GET", policy)

        assert decision.outcome == AccessOutcome.ALLOW_READ_ONLY
        assert decision.allowed
        assert decision.read_only
        assert decision.read_only_reason == "Renew to edit"

    def test_writes_denied_with_reason(self, gate):
        policy = GatePolicy(read_only_fallback=lambda tenant_id, verdict: "Renew to edit")

        decision = gate.evaluate_verdict("tenant_123", "payroll", self._expired(), "POST", policy)

        assert decision.outcome == AccessOutcome.DENY
        assert decision.code == ReasonCode.ADDON_EXPIRED
        assert decision.message == "Renew to edit"

    def test_fallback_not_applicable(self, gate):
        policy = GatePolicy(read_only_fallback=lambda tenant_id, verdict: None)

        decision = gate.evaluate_verdict("tenant_123", "payroll", self._expired(), "GET", policy)

        assert decision.outcome == AccessOutcome.DENY


class TestDenyCodes:

    def test_not_installed(self, gate, hrms_active, tenant_id, now):
        decision = gate.evaluate(tenant_id, "hrms-india", "GET", now=now)
        assert decision.outcome == AccessOutcome.ALLOW

        decision = gate.evaluate(tenant_id, "crm", "GET", now=now)
        assert decision.code == ReasonCode.ADDON_NOT_INSTALLED

    def test_trial_expired(self, gate, make_addon, tenant_id, now):
        make_addon(
            tenant_id, "hrms",
            billing_status=BillingStatus.TRIALING,
            trial_ends_at=now - timedelta(days=1),
        )

        decision = gate.evaluate(tenant_id, "hrms", "GET", now=now)

        assert decision.code == ReasonCode.ADDON_TRIAL_EXPIRED

    def test_cancelled(self, gate, make_addon, tenant_id, now):
        make_addon(tenant_id, "hrms", install_status=InstallStatus.DISABLED)

        decision = gate.evaluate(tenant_id, "hrms", "GET", now=now)

        assert decision.code == ReasonCode.ADDON_CANCELLED

    def test_expired(self, gate, make_addon, tenant_id, now):
        make_addon(tenant_id, "hrms", paid_until=now - timedelta(days=10))

        decision = gate.evaluate(tenant_id, "hrms", "GET", now=now)

        assert decision.code == ReasonCode.ADDON_EXPIRED


class TestErrorResponse:

    def test_valid_until_included_without_dependency(self, gate, make_addon, tenant_id, now):
        make_addon(
            tenant_id, "hrms",
            billing_status=BillingStatus.CANCELLED,
            paid_until=now - timedelta(days=10),
        )

        payload = gate.evaluate(tenant_id, "hrms", "GET", now=now).to_error_response("/marketplace")

        assert payload["error"] == "ADDON_ACCESS_DENIED"
        assert payload["code"] == "ADDON_EXPIRED"
        assert payload["addon"] == "hrms"
        assert payload["upgradeUrl"] == "/marketplace"
        assert "validUntil" in payload
        assert "dependency" not in payload

    def test_dependency_payload(self, gate, make_addon, tenant_id, now):
        make_addon(tenant_id, "payroll", paid_until=now + timedelta(days=30))

        payload = gate.evaluate(tenant_id, "payroll", "GET", now=now).to_error_response("/marketplace")

        assert payload["code"] == "ADDON_DEPENDENCY_MISSING"
        assert payload["dependency"] == "hrms"
        assert "validUntil" not in payload
