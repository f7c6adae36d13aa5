"""Which tenants get synced."""

import logging
from typing import Iterable, List, Optional

from portal_sync.models import Tenant, TenantStatus
from portal_sync.repositories import TenantStore

logger = logging.getLogger(__name__)


def _present(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def ineligibility_reason(tenant: Tenant) -> Optional[str]:
    """Why a tenant cannot be synced, or None when it can."""
    if tenant.status != TenantStatus.ACTIVE:
        return f"status is {tenant.status}"
    if not _present(tenant.clienttether_web_key):
        return "missing ClientTether web key"
    if not _present(tenant.clienttether_access_token):
        return "missing ClientTether access token"
    return None


def is_sync_eligible(tenant: Tenant) -> bool:
    return ineligibility_reason(tenant) is None


def filter_eligible(tenants: Iterable[Tenant]) -> List[Tenant]:
    """Active tenants with both credentials, in their original order."""
    return [tenant for tenant in tenants if is_sync_eligible(tenant)]


async def select_tenants(store: TenantStore) -> List[Tenant]:
    tenants = await store.list_tenants()
    eligible = filter_eligible(tenants)
    logger.info(f"{len(eligible)} of {len(tenants)} tenant(s) eligible for sync")
    return eligible
