"""Exceptions raised by the sync engine."""

from typing import Optional


class SyncError(Exception):
    """Base exception for all sync-engine errors."""


class RemoteFetchError(SyncError):
    """ClientTether returned an error envelope on every attempt."""

    def __init__(self, endpoint: str, message: str):
        self.endpoint = endpoint
        self.message = message
        super().__init__(f"Failed to fetch {endpoint}: {message}")


class TenantSyncTimeout(SyncError):
    """A tenant's sync ran past SYNC_TENANT_TIMEOUT_SECONDS."""

    def __init__(self, tenant_id, timeout_seconds: float):
        self.tenant_id = tenant_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Tenant {tenant_id} sync exceeded {timeout_seconds:g}s")


class TenantNotEligible(SyncError):
    """Tenant is inactive or missing ClientTether credentials."""

    def __init__(self, tenant_id, reason: Optional[str] = None):
        self.tenant_id = tenant_id
        self.reason = reason or "tenant is not eligible for sync"
        super().__init__(f"Tenant {tenant_id}: {self.reason}")


class SyncConfigurationError(SyncError):
    """Process-fatal: the pass cannot start (bad config, database unreachable)."""


class TenantNotFound(SyncError):
    """No tenant with the requested id."""

    def __init__(self, tenant_id):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant {tenant_id} not found")
