"""
TenantAddon repository for data access operations.

Encapsulates the subscription record queries used by the entitlement
resolver and the expiry sweep:
- Tenant isolation on every read path
- One query per add-on family (generic module plus all country variants)
- Compare-and-set status writes so concurrent sweeps cannot clobber each other
"""

import logging
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy.orm import Session

from src.models.tenant_addon import INSTALLED_STATUSES, TenantAddon, BillingStatus

logger = logging.getLogger(__name__)


class TenantAddonRepository:
    """
    Repository for add-on subscription records.

    Read methods require tenant_id; the sweep helpers are the only
    cross-tenant paths and never return data to a caller outside the job.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_family(self, tenant_id: str, base_code: str) -> List[TenantAddon]:
        """All records for one add-on family (generic and every variant)."""
        return self.db.query(TenantAddon).filter(
            TenantAddon.tenant_id == tenant_id,
            TenantAddon.base_code == base_code,
        ).all()

    def list_for_tenant(self, tenant_id: str) -> List[TenantAddon]:
        return self.db.query(TenantAddon).filter(
            TenantAddon.tenant_id == tenant_id,
        ).order_by(TenantAddon.base_code, TenantAddon.variant).all()

    def iter_installed(self, batch_size: int) -> Iterator[List[TenantAddon]]:
        """
        Yield batches of installed records (install_status active or trial)
        in id order.

        Keyset pagination keeps each batch query cheap and stable while the
        sweep is updating rows from earlier batches.
        """
        last_id: Optional[str] = None
        while True:
            query = self.db.query(TenantAddon).filter(
                TenantAddon.install_status.in_(INSTALLED_STATUSES),
            )
            if last_id is not None:
                query = query.filter(TenantAddon.id > last_id)
            batch = query.order_by(TenantAddon.id).limit(batch_size).all()
            if not batch:
                return
            last_id = batch[-1].id
            yield batch

    def compare_and_set_billing(
        self,
        record_id: str,
        expected_status: BillingStatus,
        expected_grace_until: Optional[datetime],
        new_status: BillingStatus,
        new_grace_until: Optional[datetime],
    ) -> bool:
        """
        Conditionally advance billing_status / grace_until.

        The write only lands if the row still holds the values the caller
        read. Returns False when another writer got there first.
        """
        query = self.db.query(TenantAddon).filter(
            TenantAddon.id == record_id,
            TenantAddon.billing_status == expected_status,
        )
        if expected_grace_until is None:
            query = query.filter(TenantAddon.grace_until.is_(None))
        else:
            query = query.filter(TenantAddon.grace_until == expected_grace_until)

        updated = query.update(
            {
                TenantAddon.billing_status: new_status,
                TenantAddon.grace_until: new_grace_until,
            },
            synchronize_session=False,
        )
        return updated == 1
