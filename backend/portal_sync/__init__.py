"""Tenant data-sync engine: ClientTether -> reporting portal rollups."""

__version__ = "1.0.0"
