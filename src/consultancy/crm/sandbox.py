"""Sandbox / demo detection for CRM identifiers.

An explicit production flag always wins. Only when the CRM says nothing do we
fall back to the vendor's placeholder-id convention: ids issued by a
non-production account (or by the old mock API) start with a recognisable
prefix such as ``demo_`` or ``synced_``.
"""

from __future__ import annotations

from collections.abc import Iterable

DEFAULT_SANDBOX_PREFIXES: tuple[str, ...] = ("sandbox_", "demo_", "test_", "synced_")


def looks_like_sandbox_id(
    value: str | None, prefixes: Iterable[str] = DEFAULT_SANDBOX_PREFIXES
) -> bool:
    """True when value starts with one of prefixes (case-insensitive)."""
    if not value:
        return False
    lowered = value.strip().lower()
    return any(lowered.startswith(p.lower()) for p in prefixes if p)


def is_sandbox_result(
    *,
    contact_id: str | None,
    invoice_id: str | None,
    explicit_production: bool | None,
    prefixes: Iterable[str] = DEFAULT_SANDBOX_PREFIXES,
) -> bool:
    """Decide whether a CRM result came from a sandbox/demo environment."""
    if explicit_production is not None:
        return not explicit_production
    prefixes = tuple(prefixes)
    return looks_like_sandbox_id(invoice_id, prefixes) or looks_like_sandbox_id(
        contact_id, prefixes
    )
