from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from .contact import for_gateway, mask_contact

logger = logging.getLogger(__name__)

TEXT_FALLBACK_BODY = (
    "Hello {reference_name}, You have been added as a reference by {voter_name} "
    "(Contact: {voter_contact}) for voter registration. Please verify this information "
    "and respond if you have any concerns. Thank you."
)

# Gateway error codes (WhatsApp Cloud API / Graph API).
# 132xxx: template missing, not approved, paused, or parameter mismatch.
TEMPLATE_ERROR_CODES = range(132000, 133000)
CREDENTIAL_ERROR_CODES = {190}
# 100: invalid parameter (bad phone number id), 2500: bad endpoint path,
# 131030: recipient not in the allowed list.
MISCONFIGURED_ERROR_CODES = {100, 2500, 131030}

# gateway and proxy error text may echo the recipient number
_DIGIT_RUN = re.compile(r"\d{10,}")


@dataclass(frozen=True)
class GatewayConfig:
    """
    Messaging gateway settings, injected into NotificationDispatcher.
    Build from app settings with GatewayConfig.from_settings(settings).
    """

    api_url: str = ""
    access_token: str = ""
    phone_number_id: str = ""
    template_name: str = "voter_reference_notification"
    template_language: str = "en_US"
    timeout_s: float = 10.0

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url and self.access_token and self.phone_number_id)

    @property
    def messages_url(self) -> str:
        return f"{self.api_url.rstrip('/')}/{self.phone_number_id}/messages"

    @classmethod
    def from_settings(cls, settings: Any) -> "GatewayConfig":
        return cls(
            api_url=settings.whatsapp_api_url,
            access_token=settings.whatsapp_access_token,
            phone_number_id=settings.whatsapp_phone_number_id,
            template_name=settings.whatsapp_template_name,
            template_language=settings.whatsapp_template_language,
            timeout_s=float(settings.whatsapp_timeout_s),
        )


class GatewayErrorKind(str, Enum):
    TEMPLATE_REJECTED = "template_rejected"
    CREDENTIALS = "credentials"
    MISCONFIGURED = "misconfigured"
    NETWORK = "network"
    OTHER = "other"


@dataclass(frozen=True)
class GatewayError:
    status_code: Optional[int]
    code: Optional[int] = None
    type: Optional[str] = None
    message: str = ""

    @property
    def kind(self) -> GatewayErrorKind:
        return classify_gateway_error(self)


@dataclass(frozen=True)
class SendResult:
    ok: bool
    message_id: Optional[str] = None
    error: Optional[GatewayError] = None


@dataclass(frozen=True)
class DeliveryOutcome:
    """Per-reference notification result. `sent` is True only on a 2xx from the gateway."""

    reference_id: str
    sent: bool
    message_id: Optional[str] = None
    error_code: Optional[str] = None
    fallback_used: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {"id": self.reference_id, "sent": self.sent}


class _ReferenceLike(Protocol):
    id: str
    reference_name: str
    reference_contact: str


class _VoterLike(Protocol):
    full_name: str
    contact: str


def classify_gateway_error(error: GatewayError) -> GatewayErrorKind:
    if error.status_code is None:
        return GatewayErrorKind.NETWORK

    code = error.code
    if code is not None:
        if code == 132 or code in TEMPLATE_ERROR_CODES:
            return GatewayErrorKind.TEMPLATE_REJECTED
        if code in CREDENTIAL_ERROR_CODES:
            return GatewayErrorKind.CREDENTIALS
        if code in MISCONFIGURED_ERROR_CODES:
            return GatewayErrorKind.MISCONFIGURED

    if "template" in (error.message or "").lower():
        return GatewayErrorKind.TEMPLATE_REJECTED
    if error.status_code == 401:
        return GatewayErrorKind.CREDENTIALS
    return GatewayErrorKind.OTHER


def _safe_json(r: httpx.Response) -> Optional[dict]:
    """
    Best-effort JSON parse:
      - returns dict if payload is a dict
      - returns None if not JSON or not dict
    """
    try:
        payload = r.json()
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _redact(text: str) -> str:
    return _DIGIT_RUN.sub(lambda m: mask_contact(m.group()), text)


def _to_int(v: Any) -> Optional[int]:
    if v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def parse_gateway_error(r: httpx.Response) -> GatewayError:
    """
    Gateway errors look like {"error": {"code": 132001, "type": "...", "message": "..."}}.
    Non-JSON bodies keep only the status code and (truncated) text.
    Phone-number-like digit runs in the text are masked before it is kept.
    """
    data = _safe_json(r)
    err = data.get("error") if data else None
    if isinstance(err, dict):
        return GatewayError(
            status_code=r.status_code,
            code=_to_int(err.get("code")),
            type=err.get("type"),
            message=_redact(str(err.get("message") or "")),
        )
    return GatewayError(status_code=r.status_code, message=_redact((r.text or "")[:500]))


def _message_id(r: httpx.Response) -> Optional[str]:
    data = _safe_json(r) or {}
    messages = data.get("messages")
    if isinstance(messages, list) and messages and isinstance(messages[0], dict):
        mid = messages[0].get("id")
        return str(mid) if mid else None
    return None


class NotificationDispatcher:
    """
    Sends one WhatsApp message per newly created reference.

    Contract:
    - template message first; on a "template rejected" error, exactly one
      plain-text fallback to the same recipient
    - credential / misconfiguration errors are logged for operators, never retried
    - any other failure (non-2xx, timeout, network) is a plain `sent=False`
    - never raises: callers always get one DeliveryOutcome per reference
    - unconfigured gateway => every outcome is sent=False, no HTTP at all
    - contact numbers are masked in every log line
    """

    def __init__(self, config: GatewayConfig, *, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config
        self.client = client

    # -------------------------
    # Payloads
    # -------------------------

    def template_payload(self, to: str, reference_name: str, voter_name: str, voter_contact: str) -> Dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "template",
            "template": {
                "name": self.config.template_name,
                "language": {"code": self.config.template_language},
                "components": [
                    {
                        "type": "body",
                        "parameters": [
                            {"type": "text", "text": reference_name},
                            {"type": "text", "text": voter_name},
                            {"type": "text", "text": voter_contact},
                        ],
                    }
                ],
            },
        }

    def text_payload(self, to: str, reference_name: str, voter_name: str, voter_contact: str) -> Dict[str, Any]:
        body = TEXT_FALLBACK_BODY.format(
            reference_name=reference_name,
            voter_name=voter_name,
            voter_contact=voter_contact,
        )
        return {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }

    # -------------------------
    # Public API
    # -------------------------

    async def notify(self, reference: _ReferenceLike, voter: _VoterLike) -> DeliveryOutcome:
        masked = mask_contact(reference.reference_contact)

        if not self.config.is_configured:
            logger.warning(
                "WhatsApp configuration missing, skipping notification (reference=%s contact=%s)",
                reference.id,
                masked,
            )
            return DeliveryOutcome(reference_id=reference.id, sent=False, error_code="NOT_CONFIGURED")

        try:
            return await self._deliver(reference, voter, masked)
        except Exception as e:
            logger.error(
                "Error sending WhatsApp notification (reference=%s contact=%s): %s",
                reference.id,
                masked,
                e.__class__.__name__,
            )
            return DeliveryOutcome(reference_id=reference.id, sent=False, error_code="UNEXPECTED")

    async def notify_all(self, references: Sequence[_ReferenceLike], voter: _VoterLike) -> List[DeliveryOutcome]:
        """One concurrent attempt per reference; order of outcomes matches input."""
        if not references:
            return []
        return list(await asyncio.gather(*(self.notify(r, voter) for r in references)))

    # -------------------------
    # Internals
    # -------------------------

    async def _deliver(self, reference: _ReferenceLike, voter: _VoterLike, masked: str) -> DeliveryOutcome:
        to = for_gateway(reference.reference_contact)
        args = (to, reference.reference_name, voter.full_name, voter.contact)

        own_client = None
        client = self.client
        if client is None:
            own_client = httpx.AsyncClient(timeout=self.config.timeout_s)
            client = own_client

        try:
            result = await self._post(client, self.template_payload(*args))
            if result.ok:
                self._log_sent(reference, masked, result.message_id, "template")
                return DeliveryOutcome(reference_id=reference.id, sent=True, message_id=result.message_id)

            error = result.error
            if error is not None and error.kind == GatewayErrorKind.TEMPLATE_REJECTED:
                logger.warning(
                    "WhatsApp template rejected (code=%s), falling back to text (reference=%s contact=%s)",
                    error.code,
                    reference.id,
                    masked,
                )
                fallback = await self._post(client, self.text_payload(*args))
                if fallback.ok:
                    self._log_sent(reference, masked, fallback.message_id, "text")
                    return DeliveryOutcome(
                        reference_id=reference.id,
                        sent=True,
                        message_id=fallback.message_id,
                        fallback_used=True,
                    )
                error = fallback.error
                self._log_failure(reference, masked, error, "text")
                return DeliveryOutcome(
                    reference_id=reference.id,
                    sent=False,
                    error_code=_error_code(error),
                    fallback_used=True,
                )

            self._log_failure(reference, masked, error, "template")
            return DeliveryOutcome(reference_id=reference.id, sent=False, error_code=_error_code(error))
        finally:
            if own_client is not None:
                await own_client.aclose()

    async def _post(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> SendResult:
        headers = {
            "Authorization": f"Bearer {self.config.access_token}",
            "Content-Type": "application/json",
        }
        try:
            r = await client.post(
                self.config.messages_url,
                json=payload,
                headers=headers,
                timeout=self.config.timeout_s,
            )
        except httpx.TimeoutException:
            return SendResult(ok=False, error=GatewayError(status_code=None, message="timeout"))
        except httpx.RequestError as e:
            return SendResult(ok=False, error=GatewayError(status_code=None, message=e.__class__.__name__))

        if r.is_success:
            return SendResult(ok=True, message_id=_message_id(r))
        return SendResult(ok=False, error=parse_gateway_error(r))

    def _log_sent(self, reference: _ReferenceLike, masked: str, message_id: Optional[str], kind: str) -> None:
        logger.info(
            "WhatsApp notification sent (%s) message_id=%s reference=%s contact=%s",
            kind,
            message_id,
            reference.id,
            masked,
        )

    def _log_failure(
        self,
        reference: _ReferenceLike,
        masked: str,
        error: Optional[GatewayError],
        stage: str,
    ) -> None:
        if error is None:
            logger.error("WhatsApp %s message failed (reference=%s contact=%s)", stage, reference.id, masked)
            return

        kind = error.kind
        if kind == GatewayErrorKind.CREDENTIALS:
            logger.error(
                "WhatsApp access token invalid or expired: status=%s code=%s type=%s message=%s "
                "(reference=%s contact=%s). Check WHATSAPP_ACCESS_TOKEN.",
                error.status_code,
                error.code,
                error.type,
                error.message,
                reference.id,
                masked,
            )
        elif kind == GatewayErrorKind.MISCONFIGURED:
            logger.error(
                "WhatsApp endpoint or recipient misconfigured: status=%s code=%s type=%s message=%s "
                "(reference=%s contact=%s). Check WHATSAPP_API_URL / WHATSAPP_PHONE_NUMBER_ID.",
                error.status_code,
                error.code,
                error.type,
                error.message,
                reference.id,
                masked,
            )
        elif kind == GatewayErrorKind.NETWORK:
            logger.error(
                "WhatsApp gateway unreachable (%s) for %s message (reference=%s contact=%s)",
                error.message,
                stage,
                reference.id,
                masked,
            )
        else:
            logger.error(
                "WhatsApp API error on %s message: status=%s code=%s message=%s (reference=%s contact=%s)",
                stage,
                error.status_code,
                error.code,
                error.message,
                reference.id,
                masked,
            )


def _error_code(error: Optional[GatewayError]) -> Optional[str]:
    if error is None:
        return None
    if error.code is not None:
        return str(error.code)
    if error.status_code is None:
        return "NETWORK"
    return f"HTTP_{error.status_code}"
