"""
Add-on dependency checking.

An add-on may require other add-ons. Prerequisites are OR-satisfied: any
one listed prerequisite being entitled is enough, and each prerequisite is
itself satisfied by any of its country variants (hrms, hrms-india, ...).

A dependency can only block access. Being satisfied never stands in for
the dependent add-on's own entitlement.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from src.config import addon_catalog
from src.entitlements.errors import EntitlementLookupError
from src.entitlements.models import AddonKey, DependencyCheckResult, EntitlementState
from src.entitlements.resolver import EntitlementResolver, utcnow

logger = logging.getLogger(__name__)


class DependencyGraph:
    """
    Static add-on -> prerequisites map.

    A variant code without its own entry inherits the generic entry, so
    payroll-uae is checked against payroll's prerequisites.
    """

    def __init__(self, dependencies: Dict[str, Sequence[str]], variants: Sequence[str] = ()):
        self._dependencies = {
            code.lower(): [dep.lower() for dep in deps]
            for code, deps in dependencies.items()
        }
        self._variants = list(variants)

    @classmethod
    def from_catalog(cls) -> "DependencyGraph":
        loader = addon_catalog.get_addon_catalog_loader()
        return cls(loader.dependency_map(), loader.variants)

    def is_known(self, addon_code: str) -> bool:
        return self._entry_for(addon_code) is not None

    def get(self, addon_code: str) -> List[str]:
        entry = self._entry_for(addon_code)
        return list(entry) if entry is not None else []

    def _entry_for(self, addon_code: str) -> Optional[List[str]]:
        code = addon_code.lower()
        if code in self._dependencies:
            return self._dependencies[code]
        key = AddonKey.parse(code, self._variants)
        if key.is_variant:
            return self._dependencies.get(key.base_code)
        return None


def merge_dependencies(static_deps: Iterable[str], extra_deps: Iterable[str]) -> List[str]:
    """Static prerequisites first, then caller extras, without duplicates."""
    merged: List[str] = []
    for dep in list(static_deps) + list(extra_deps):
        dep = dep.strip().lower()
        if dep and dep not in merged:
            merged.append(dep)
    return merged


class DependencyChecker:
    """Checks whether an add-on's prerequisites hold for a tenant."""

    def __init__(self, resolver: EntitlementResolver, graph: Optional[DependencyGraph] = None):
        self.resolver = resolver
        self.graph = graph or DependencyGraph.from_catalog()

    def check_dependencies(
        self,
        tenant_id: str,
        addon_code: str,
        extra_deps: Iterable[str] = (),
        now: Optional[datetime] = None,
        strict: bool = False,
    ) -> DependencyCheckResult:
        """
        Evaluate prerequisites in configured order.

        With ``strict`` a lookup failure raises EntitlementLookupError;
        otherwise it counts as unsatisfied (fail closed).
        """
        now = now or utcnow()
        extra_deps = list(extra_deps)

        if not self.graph.is_known(addon_code) and not extra_deps:
            logger.warning(
                "No dependency configuration for add-on, treating as unconstrained",
                extra={"tenant_id": tenant_id, "addon_code": addon_code},
            )

        deps = merge_dependencies(self.graph.get(addon_code), extra_deps)
        if not deps:
            return DependencyCheckResult(satisfied=True)

        first_state: Optional[EntitlementState] = None
        for dep in deps:
            try:
                family = self.resolver.resolve_family(tenant_id, dep, now)
            except EntitlementLookupError as e:
                if strict:
                    raise
                logger.error(
                    "Dependency lookup failed, treating as unsatisfied",
                    extra={
                        "tenant_id": tenant_id,
                        "addon_code": addon_code,
                        "dependency": dep,
                        "error": str(e.cause) if e.cause else str(e),
                    },
                )
                if first_state is None:
                    first_state = EntitlementState.NOT_INSTALLED
                continue

            if first_state is None:
                first_state = family[0][1].state

            for key, verdict in family:
                if verdict.entitled:
                    return DependencyCheckResult(satisfied=True, satisfied_by=key.code)

        return DependencyCheckResult(
            satisfied=False,
            missing_dependency=deps[0],
            dependency_state=first_state,
        )
