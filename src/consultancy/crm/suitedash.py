"""SuiteDash CRM adapter -- CRMClient over the SuiteDash Secure API.

Key implementation details:
- Credentials come from env or admin-saved settings; a missing public id,
  secret key or API URL (or enabled=false) means not configured, and every
  call raises NotConfigured before any network I/O
- Find-or-create by email: GET /contacts?email= first, then PUT or POST,
  so repeated upserts never duplicate a contact
- httpx timeout on every request; timeouts, connection errors and 5xx map to
  NetworkFailure and are retried with tenacity exponential backoff; 4xx maps
  to RemoteRejected and is never retried
- Invoice endpoint answering 402/403 means the plan lacks the Invoice API,
  reported as CapabilityUnavailable
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.consultancy.config import Settings
from src.consultancy.core.monitoring import track_crm_call
from src.consultancy.crm.adapter import CRMClient
from src.consultancy.crm.errors import (
    CapabilityUnavailable,
    NetworkFailure,
    NotConfigured,
    RemoteRejected,
)
from src.consultancy.crm.schemas import (
    ConnectionCheck,
    ContactProfile,
    CrmContact,
    CrmInvoice,
    LeadCreate,
    LineItem,
)
from src.consultancy.integrations.schemas import SuiteDashSettings

logger = structlog.get_logger(__name__)

_CONTACT_ID_KEYS = ("uid", "id", "contact_id")
_INVOICE_ID_KEYS = ("uid", "id", "invoice_id")
_LEAD_ID_KEYS = ("uid", "id", "lead_id")
_PAYMENT_URL_KEYS = ("payment_url", "payment_link", "public_url")
_PLAN_LIMIT_STATUSES = {402, 403}


def _unwrap(payload: Any) -> Any:
    """SuiteDash wraps most bodies as {"success": ..., "data": ...}."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _extract(data: Any, keys: tuple[str, ...]) -> str | None:
    if not isinstance(data, dict):
        return None
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    return response.text[:500]


class SuiteDashClient(CRMClient):
    """SuiteDash Secure API client.

    Args:
        api_url: Base URL of the Secure API.
        public_id: Account public id (X-Public-ID header).
        secret_key: Account secret key (X-Secret-Key header).
        enabled: Master switch; False forces the not-configured state.
        invoicing_enabled: Whether the account's plan includes the Invoice API.
        production: Explicit production flag, None when unknown.
        timeout: Per-request timeout in seconds.
        max_retries: Attempts for retryable (NetworkFailure) errors.
        retry_backoff: Exponential backoff multiplier in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        api_url: str,
        public_id: str,
        secret_key: str,
        *,
        enabled: bool = True,
        invoicing_enabled: bool = False,
        production: bool | None = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._public_id = public_id
        self._secret_key = secret_key
        self._configured = bool(enabled and self._api_url and public_id and secret_key)
        self._invoicing = invoicing_enabled
        self._production = production
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._retry_backoff = retry_backoff
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> SuiteDashClient:
        return cls.from_integration(SuiteDashSettings.from_env(settings), settings)

    @classmethod
    def from_integration(
        cls, integration: SuiteDashSettings, settings: Settings
    ) -> SuiteDashClient:
        """Client for admin-saved settings; transport limits still come from env."""
        return cls(
            api_url=integration.api_url,
            public_id=integration.public_id,
            secret_key=integration.secret_key,
            enabled=integration.enabled,
            invoicing_enabled=integration.invoicing_enabled,
            production=integration.production,
            timeout=settings.CRM_TIMEOUT_SECONDS,
            max_retries=settings.CRM_MAX_RETRIES,
        )

    # ── Capabilities ────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        return self._configured

    def supports_invoicing(self) -> bool:
        return self._configured and self._invoicing

    def is_production(self) -> bool | None:
        return self._production

    # ── Transport ───────────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client with auth headers and timeout."""
        return httpx.AsyncClient(
            base_url=self._api_url,
            headers={
                "X-Public-ID": self._public_id,
                "X-Secret-Key": self._secret_key,
                "Accept": "application/json",
            },
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """One HTTP round-trip, with httpx errors mapped to the CRM taxonomy."""
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as exc:
            raise NetworkFailure(
                f"SuiteDash request timed out after {self._timeout:g}s: {method} {path}"
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkFailure(f"SuiteDash connection failed: {exc}") from exc

        if response.status_code >= 500:
            raise NetworkFailure(
                f"SuiteDash server error {response.status_code}: {_error_message(response)}"
            )
        if response.status_code >= 400:
            raise RemoteRejected(response.status_code, _error_message(response))
        if not response.content:
            return {}
        try:
            return _unwrap(response.json())
        except ValueError as exc:
            raise RemoteRejected(response.status_code, "response body is not JSON") from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """_send with retry on NetworkFailure; RemoteRejected surfaces at once."""
        if not self._configured:
            raise NotConfigured("SuiteDash API is not configured")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._retry_backoff, max=10),
            retry=retry_if_exception_type(NetworkFailure),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "suitedash.retry",
                        method=method,
                        path=path,
                        attempt=attempt.retry_state.attempt_number,
                    )
                data = await self._send(method, path, json=json, params=params)
        return data

    # ── Contacts ────────────────────────────────────────────────────────

    async def _find_contact_id(self, email: str) -> str | None:
        data = await self._request("GET", "/contacts", params={"email": email})
        candidates = data if isinstance(data, list) else [data]
        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            if str(candidate.get("email", "")).strip().lower() == email:
                return _extract(candidate, _CONTACT_ID_KEYS)
        return None

    @staticmethod
    def _contact_payload(profile: ContactProfile) -> dict[str, Any]:
        return {
            "first_name": profile.first_name,
            "last_name": profile.last_name,
            "email": profile.email,
            "phone": profile.phone or "",
            "company": profile.company or "",
            "notes": profile.notes or "",
            "tags": profile.tags,
            "custom_fields": profile.custom_fields,
        }

    async def upsert_contact(self, profile: ContactProfile) -> CrmContact:
        """Find the contact by email, then update it or create it."""
        if not self._configured:
            raise NotConfigured("SuiteDash API is not configured")

        async with track_crm_call("upsert_contact"):
            payload = self._contact_payload(profile)
            existing_id = await self._find_contact_id(profile.email)

            if existing_id is not None:
                await self._request("PUT", f"/contacts/{existing_id}", json=payload)
                logger.info("suitedash.contact_updated", contact_id=existing_id)
                return CrmContact(id=existing_id, email=profile.email, created=False)

            data = await self._request("POST", "/contacts", json=payload)
            contact_id = _extract(data, _CONTACT_ID_KEYS)
            if contact_id is None:
                raise RemoteRejected("invalid_response", "contact created without an id")
            logger.info("suitedash.contact_created", contact_id=contact_id)
            return CrmContact(id=contact_id, email=profile.email, created=True)

    # ── Invoices ────────────────────────────────────────────────────────

    async def create_invoice(
        self,
        contact_ref: str,
        line_items: list[LineItem],
        *,
        reference: str | None = None,
    ) -> CrmInvoice:
        """Create an invoice with a payment link for an existing contact."""
        if not self._configured:
            raise NotConfigured("SuiteDash API is not configured")
        if not self._invoicing:
            raise CapabilityUnavailable("invoicing")

        async with track_crm_call("create_invoice"):
            payload = {
                "contact_id": contact_ref,
                "reference": reference,
                "line_items": [
                    {
                        "description": item.description,
                        "unit_price": item.unit_price,
                        "quantity": item.quantity,
                    }
                    for item in line_items
                ],
            }
            try:
                data = await self._request("POST", "/invoices", json=payload)
            except RemoteRejected as exc:
                if exc.code in _PLAN_LIMIT_STATUSES:
                    raise CapabilityUnavailable("invoicing") from exc
                raise

            invoice_id = _extract(data, _INVOICE_ID_KEYS)
            if invoice_id is None:
                raise RemoteRejected("invalid_response", "invoice created without an id")

            production_flag = data.get("is_production") if isinstance(data, dict) else None
            total = data.get("total") if isinstance(data, dict) else None
            invoice = CrmInvoice(
                id=invoice_id,
                payment_url=_extract(data, _PAYMENT_URL_KEYS),
                total=float(total) if isinstance(total, (int, float)) else None,
                is_production=production_flag if isinstance(production_flag, bool) else None,
            )
            logger.info(
                "suitedash.invoice_created",
                invoice_id=invoice.id,
                contact_id=contact_ref,
                has_payment_url=invoice.payment_url is not None,
            )
            return invoice

    # ── Leads ───────────────────────────────────────────────────────────

    async def create_lead(self, contact_ref: str, lead: LeadCreate) -> str:
        if not self._configured:
            raise NotConfigured("SuiteDash API is not configured")

        async with track_crm_call("create_lead"):
            data = await self._request(
                "POST",
                "/leads",
                json={
                    "contact_id": contact_ref,
                    "source": lead.source,
                    "status": lead.status,
                    "pillar": lead.pillar,
                    "message": lead.message,
                    "metadata": lead.metadata,
                },
            )
            lead_id = _extract(data, _LEAD_ID_KEYS)
            if lead_id is None:
                raise RemoteRejected("invalid_response", "lead created without an id")
            logger.info("suitedash.lead_created", lead_id=lead_id, contact_id=contact_ref)
            return lead_id

    # ── Diagnostics ─────────────────────────────────────────────────────

    async def test_connection(self) -> ConnectionCheck:
        """GET /ping. Reports failures as a value instead of raising."""
        if not self._configured:
            return ConnectionCheck(success=False, message="SuiteDash API is not configured")
        try:
            async with track_crm_call("test_connection"):
                await self._request("GET", "/ping")
        except (NetworkFailure, RemoteRejected) as exc:
            logger.warning("suitedash.connection_test_failed", error=exc.message)
            return ConnectionCheck(success=False, message=f"Connection failed: {exc.message}")
        return ConnectionCheck(
            success=True,
            message="Connection successful",
            invoicing_available=self._invoicing,
        )
