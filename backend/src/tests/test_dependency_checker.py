"""
Tests for add-on dependency checking.

Prerequisites are OR-satisfied across the listed add-ons and across each
add-on's country variants.
"""

import logging
from datetime import timedelta
from unittest.mock import Mock

import pytest

from src.entitlements.dependencies import DependencyChecker, DependencyGraph, merge_dependencies
from src.entitlements.errors import EntitlementLookupError
from src.entitlements.models import EntitlementState
from src.entitlements.resolver import EntitlementResolver
from src.models.tenant_addon import BillingStatus


@pytest.fixture
def catalog_checker(db_session):
    resolver = EntitlementResolver(db_session)
    return DependencyChecker(resolver)


class TestDependencyGraph:

    def test_catalog_entries(self):
        graph = DependencyGraph.from_catalog()

        assert graph.get("payroll") == ["hrms"]
        assert graph.get("payroll-india") == ["hrms", "hrms-india"]
        assert graph.get("hrms") == []

    def test_variant_inherits_generic_entry(self):
        graph = DependencyGraph({"payroll": ["hrms"]}, ["india", "uae"])

        assert graph.is_known("payroll-uae")
        assert graph.get("payroll-uae") == ["hrms"]

    def test_unknown_code(self):
        graph = DependencyGraph({"payroll": ["hrms"]}, ["india"])

        assert not graph.is_known("crm")
        assert graph.get("crm") == []

    def test_merge_dependencies_keeps_order_without_duplicates(self):
        assert merge_dependencies(["hrms", "hrms-india"], ["HRMS", "crm", " "]) == [
            "hrms",
            "hrms-india",
            "crm",
        ]


class TestCheckDependencies:

    def test_no_dependencies_is_satisfied(self, catalog_checker, tenant_id, now):
        result = catalog_checker.check_dependencies(tenant_id, "hrms", now=now)

        assert result.satisfied is True
        assert result.missing_dependency is None

    def test_missing_dependency(self, catalog_checker, tenant_id, now):
        result = catalog_checker.check_dependencies(tenant_id, "payroll", now=now)

        assert result.satisfied is False
        assert result.missing_dependency == "hrms"
        assert result.dependency_state == EntitlementState.NOT_INSTALLED

    def test_expired_dependency_reports_state(self, catalog_checker, make_addon, tenant_id, now):
        make_addon(
            tenant_id, "hrms",
            billing_status=BillingStatus.EXPIRED,
            paid_until=now - timedelta(days=20),
        )

        result = catalog_checker.check_dependencies(tenant_id, "payroll", now=now)

        assert result.satisfied is False
        assert result.missing_dependency == "hrms"
        assert result.dependency_state == EntitlementState.EXPIRED

    def test_any_variant_satisfies(self, db_session, make_addon, tenant_id, now):
        make_addon(tenant_id, "hr-foundation", variant="a",
                   billing_status=BillingStatus.EXPIRED, paid_until=now - timedelta(days=10))
        make_addon(tenant_id, "hr-foundation", variant="b", paid_until=now + timedelta(days=10))
        resolver = EntitlementResolver(db_session, variants=["a", "b", "c"])
        checker = DependencyChecker(
            resolver,
            DependencyGraph({"payroll": ["hr-foundation"]}, ["a", "b", "c"]),
        )

        result = checker.check_dependencies(tenant_id, "payroll", now=now)

        assert result.satisfied is True
        assert result.satisfied_by == "hr-foundation-b"

    def test_second_listed_dependency_satisfies(self, catalog_checker, make_addon, tenant_id, now):
        make_addon(tenant_id, "hrms", variant="india", paid_until=now + timedelta(days=10))

        result = catalog_checker.check_dependencies(tenant_id, "payroll-india", now=now)

        assert result.satisfied is True

    def test_grace_dependency_satisfies(self, catalog_checker, make_addon, tenant_id, now):
        paid_until = now - timedelta(days=1)
        make_addon(
            tenant_id, "hrms",
            billing_status=BillingStatus.GRACE_PERIOD,
            paid_until=paid_until,
            grace_until=paid_until + timedelta(days=3),
        )

        result = catalog_checker.check_dependencies(tenant_id, "payroll", now=now)

        assert result.satisfied is True

    def test_extra_dependencies_are_checked(self, catalog_checker, make_addon, tenant_id, now):
        make_addon(tenant_id, "crm", billing_status=BillingStatus.CANCELLED)

        result = catalog_checker.check_dependencies(tenant_id, "reports", extra_deps=["crm"], now=now)

        assert result.satisfied is False
        assert result.missing_dependency == "crm"
        assert result.dependency_state == EntitlementState.EXPIRED

    def test_unknown_addon_is_unconstrained(self, catalog_checker, tenant_id, now, caplog):
        with caplog.at_level(logging.WARNING, logger="src.entitlements.dependencies"):
            result = catalog_checker.check_dependencies(tenant_id, "crm", now=now)

        assert result.satisfied is True
        assert "No dependency configuration" in caplog.text

    def test_satisfied_dependency_does_not_grant_access(self, db_session, make_addon, tenant_id, now):
        make_addon(tenant_id, "hrms", paid_until=now + timedelta(days=10))
        resolver = EntitlementResolver(db_session)

        result = DependencyChecker(resolver).check_dependencies(tenant_id, "payroll", now=now)

        assert result.satisfied is True
        assert resolver.resolve(tenant_id, "payroll", now).entitled is False


class TestLookupFailures:

    @pytest.fixture
    def failing_resolver(self):
        resolver = Mock(spec=EntitlementResolver)
        resolver.resolve_family.side_effect = EntitlementLookupError("tenant_123", "hrms")
        return resolver

    def test_lookup_failure_is_unsatisfied(self, failing_resolver, now):
        checker = DependencyChecker(failing_resolver, DependencyGraph({"payroll": ["hrms"]}))

        result = checker.check_dependencies("tenant_123", "payroll", now=now)

        assert result.satisfied is False
        assert result.dependency_state == EntitlementState.NOT_INSTALLED

    def test_strict_lookup_failure_raises(self, failing_resolver, now):
        checker = DependencyChecker(failing_resolver, DependencyGraph({"payroll": ["hrms"]}))

        with pytest.raises(EntitlementLookupError):
            checker.check_dependencies("tenant_123", "payroll", now=now, strict=True)
