"""CRM error taxonomy.

Adapters raise these; the sync engine and the fulfillment orchestrator catch
them and turn them into persisted values (a failed SyncRecord or a deferred
invoice). Nothing above those two layers ever sees a CrmError.

Each error carries a stable ``kind`` used in logs, metrics and the audit log.
"""

from __future__ import annotations


class CrmError(Exception):
    """Base class for every failure crossing the CRM boundary."""

    kind = "crm_error"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotConfigured(CrmError):
    """No credentials: the adapter refuses to touch the network."""

    kind = "not_configured"

    def __init__(self, message: str = "CRM not configured") -> None:
        super().__init__(message)


class CapabilityUnavailable(CrmError):
    """Credentials present, but the plan/feature does not include this call."""

    kind = "capability_unavailable"

    def __init__(self, capability: str) -> None:
        super().__init__(f"CRM capability unavailable: {capability}")
        self.capability = capability


class RemoteRejected(CrmError):
    """CRM returned a 4xx / validation error. Not retried without a payload change."""

    kind = "remote_rejected"

    def __init__(self, code: int | str, message: str) -> None:
        super().__init__(f"CRM rejected request ({code}): {message}")
        self.code = code
        self.detail = message


class NetworkFailure(CrmError):
    """Timeout, connection error or CRM-side 5xx. Retryable."""

    kind = "network_failure"
    retryable = True
