"""CRM integration layer -- pluggable client pattern for contact and invoice sync.

Provides the abstract CRMClient interface with one concrete implementation:
- SuiteDashClient: SuiteDash Secure API over httpx with tenacity retries

Errors are raised as CrmError subclasses (NotConfigured, CapabilityUnavailable,
RemoteRejected, NetworkFailure) and converted to persisted values by the sync
engine and the fulfillment orchestrator.
"""

from src.consultancy.crm.adapter import CRMClient
from src.consultancy.crm.errors import (
    CapabilityUnavailable,
    CrmError,
    NetworkFailure,
    NotConfigured,
    RemoteRejected,
)
from src.consultancy.crm.sandbox import DEFAULT_SANDBOX_PREFIXES, is_sandbox_result
from src.consultancy.crm.suitedash import SuiteDashClient

__all__ = [
    "CRMClient",
    "SuiteDashClient",
    "CrmError",
    "NotConfigured",
    "CapabilityUnavailable",
    "RemoteRejected",
    "NetworkFailure",
    "DEFAULT_SANDBOX_PREFIXES",
    "is_sandbox_result",
]
