"""
x402 payment gate.

Each paid request walks one path through a small state machine:

    no X-PAYMENT header  -> CHALLENGE (402 + payment requirements)
    undecodable header   -> REJECTED  (400)
    facilitator /verify  -> REJECTED  (402) if invalid
    facilitator /settle  -> REJECTED  (402) if not settled, else SETTLED

Verify and settle always run together, in order, synchronously. Nothing is
cached between requests, so a payment can never be reused. Facilitator
transport failures and non-2xx responses raise UpstreamError (502).
"""
import base64
import binascii
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from app.errors import PaymentRejected, UpstreamError
from app.services.route_registry import RouteDefinition

logger = logging.getLogger(__name__)

X402_VERSION = 1
PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_SCHEME = "permit"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class PaymentRequirement(_CamelModel):
    """What the caller must pay for one request to a route."""
    scheme: str
    network: str
    max_amount_required: str
    resource: str
    description: str
    mime_type: str = "application/json"
    pay_to: str
    max_timeout_seconds: int
    asset: str
    extra: Optional[dict[str, Any]] = None


class VerifyResponse(_CamelModel):
    is_valid: bool
    invalid_reason: Optional[str] = None
    payer: Optional[str] = None


class SettleResponse(_CamelModel):
    success: bool
    network: str = ""
    transaction: Optional[str] = None
    error_reason: Optional[str] = None
    payer: Optional[str] = None


class PaymentStatus(str, Enum):
    CHALLENGE = "challenge"
    REJECTED = "rejected"
    SETTLED = "settled"


@dataclass
class PaymentOutcome:
    """Result of running the payment protocol for one request."""
    status: PaymentStatus
    status_code: int
    requirement: Optional[PaymentRequirement] = None
    reason: Optional[str] = None
    transaction: Optional[str] = None
    payer: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self.status == PaymentStatus.SETTLED

    def payment_required_body(self) -> dict:
        """x402 PaymentRequiredResponse for a 402."""
        return {
            "x402Version": X402_VERSION,
            "accepts": [self.requirement.to_wire()] if self.requirement else [],
            "error": self.reason,
        }


def decode_payment_header(value: str) -> dict:
    """Base64-decode and JSON-parse an X-PAYMENT header.

    Raises:
        ValueError: If the header is not base64 or not a JSON object
    """
    try:
        raw = base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid payment encoding: {e}") from e

    try:
        payload = json.loads(raw)
    except ValueError as e:
        raise ValueError(f"Invalid payment JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ValueError("Invalid payment JSON: expected an object")
    return payload


class PaymentGate:
    """Challenge, verify, and settle x402 payments against a facilitator."""

    def __init__(self, settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client

    def build_requirement(self, definition: RouteDefinition) -> PaymentRequirement:
        s = self.settings
        return PaymentRequirement(
            scheme=PAYMENT_SCHEME,
            network=s.PAYMENT_NETWORK,
            max_amount_required=str(definition.price_minor_units(s.PAYMENT_TOKEN_DECIMALS)),
            resource=definition.path,
            description=definition.description,
            pay_to=s.WALLET_ADDRESS,
            max_timeout_seconds=s.PAYMENT_TIMEOUT_SECONDS,
            asset=s.PAYMENT_TOKEN_ADDRESS,
            extra={
                "token": s.PAYMENT_TOKEN_SYMBOL,
                "address": s.PAYMENT_TOKEN_ADDRESS,
                "decimals": s.PAYMENT_TOKEN_DECIMALS,
                "name": s.PAYMENT_TOKEN_NAME,
                "version": s.PAYMENT_TOKEN_VERSION,
                "facilitatorSigner": s.FACILITATOR_SIGNER,
                "minimum_amount": True,
            },
        )

    async def evaluate(
        self, definition: RouteDefinition, payment_header: Optional[str]
    ) -> PaymentOutcome:
        """
        Run the full payment protocol for one request.

        Raises:
            UpstreamError: If the facilitator is unreachable or returns non-2xx
        """
        requirement = self.build_requirement(definition)

        if not payment_header:
            return PaymentOutcome(PaymentStatus.CHALLENGE, 402, requirement=requirement)

        try:
            payload = decode_payment_header(payment_header)
        except ValueError as e:
            return PaymentOutcome(PaymentStatus.REJECTED, 400, reason=str(e))

        if self.settings.X402_TEST_MODE:
            logger.warning("x402 test mode: accepting payment without verification")
            return PaymentOutcome(
                PaymentStatus.SETTLED, 200, requirement=requirement, transaction="test-mode-no-tx"
            )

        request_body = {
            "x402Version": X402_VERSION,
            "paymentPayload": payload,
            "paymentRequirements": requirement.to_wire(),
        }

        verify = await self._call_facilitator("verify", request_body, VerifyResponse)
        if not verify.is_valid:
            reason = verify.invalid_reason or ""
            logger.warning(f"Payment invalid for {definition.path}: {reason}")
            return PaymentOutcome(
                PaymentStatus.REJECTED,
                402,
                requirement=requirement,
                reason=f"Payment invalid: {reason}",
                payer=verify.payer,
            )

        settle = await self._call_facilitator("settle", request_body, SettleResponse)
        if not settle.success:
            reason = settle.error_reason or ""
            logger.warning(f"Settlement failed for {definition.path}: {reason}")
            return PaymentOutcome(
                PaymentStatus.REJECTED,
                402,
                requirement=requirement,
                reason=f"Settlement failed: {reason}",
                payer=settle.payer or verify.payer,
            )

        logger.info(f"Payment settled for {definition.path}: {settle.transaction}")
        return PaymentOutcome(
            PaymentStatus.SETTLED,
            200,
            requirement=requirement,
            transaction=settle.transaction,
            payer=settle.payer or verify.payer,
        )

    async def require_payment(
        self, definition: RouteDefinition, payment_header: Optional[str]
    ) -> PaymentOutcome:
        """
        Evaluate payment and return the settled outcome.

        Raises:
            PaymentRejected: For a challenge or any rejection
            UpstreamError: If the facilitator is unreachable or returns non-2xx
        """
        outcome = await self.evaluate(definition, payment_header)
        if not outcome.settled:
            raise PaymentRejected(outcome)
        return outcome

    async def _call_facilitator(self, action: str, body: dict, response_model):
        url = f"{self.settings.FACILITATOR_URL.rstrip('/')}/{action}"
        try:
            response = await self.http_client.post(url, json=body)
        except httpx.HTTPError as e:
            logger.error(f"Facilitator {action} request failed: {e}")
            raise UpstreamError(f"Failed to contact facilitator for {action}: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            logger.error(f"Facilitator {action} error {response.status_code}: {response.text}")
            raise UpstreamError(
                f"Facilitator {action} error: {response.status_code} - {response.text}"
            )

        try:
            return response_model.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise UpstreamError(f"Failed to parse {action} response: {e}") from e
