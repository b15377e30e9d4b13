"""Validation helpers for trace IDs and per-tenant limits."""

from __future__ import annotations

from typing import Callable, Iterable


def valid_trace_id(trace_id: bytes) -> bool:
    """Confirm that a trace ID is 128 bits long."""
    return len(trace_id) == 16


def smallest_positive_non_zero_int_per_tenant(
    tenant_ids: Iterable[str], limit: Callable[[str], int]
) -> int:
    """Smallest positive limit across tenants, or 0 when none is positive."""
    positive = [v for v in (limit(tenant_id) for tenant_id in tenant_ids) if v > 0]
    return min(positive, default=0)