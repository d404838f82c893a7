"""Tests for the x402 payment gate."""
import base64
import logging

import pytest

from app.errors import PaymentRejected, UpstreamError
from app.services.payment_gate import (
    PaymentGate,
    PaymentStatus,
    decode_payment_header,
)

from conftest import (
    FACILITATOR_HOST,
    FOX_HIGH,
    FOX_LOW,
    PAYER,
    PAYMENT_HEADER_VALUE,
    TOKEN,
    TX_HASH,
    WALLET,
    FakeUpstream,
)


@pytest.fixture
def gate(test_settings, http_client):
    return PaymentGate(test_settings, http_client)


class TestDecodePaymentHeader:
    """Test X-PAYMENT decoding."""

    def test_decode_valid(self):
        payload = decode_payment_header(PAYMENT_HEADER_VALUE)
        assert payload["x402Version"] == 1
        assert payload["payload"]["owner"] == PAYER

    def test_not_base64(self):
        with pytest.raises(ValueError, match="Invalid payment encoding"):
            decode_payment_header("not base64!!")

    def test_not_json(self):
        with pytest.raises(ValueError, match="Invalid payment JSON"):
            decode_payment_header(base64.b64encode(b"hello").decode())

    def test_json_but_not_object(self):
        with pytest.raises(ValueError, match="expected an object"):
            decode_payment_header(base64.b64encode(b"[1, 2]").decode())


class TestBuildRequirement:
    """Test payment requirement construction."""

    def test_requirement_fields(self, gate):
        requirement = gate.build_requirement(FOX_LOW).to_wire()

        assert requirement["scheme"] == "permit"
        assert requirement["network"] == "base"
        assert requirement["maxAmountRequired"] == "1000"
        assert requirement["resource"] == "/fox"
        assert requirement["description"] == "Generate a fox picture"
        assert requirement["mimeType"] == "application/json"
        assert requirement["payTo"] == WALLET
        assert requirement["maxTimeoutSeconds"] == 300
        assert requirement["asset"] == TOKEN

    def test_requirement_extra(self, gate):
        extra = gate.build_requirement(FOX_LOW).to_wire()["extra"]

        assert extra == {
            "token": "FOXY",
            "address": TOKEN,
            "decimals": 2,
            "name": "Foxy",
            "version": "1",
            "facilitatorSigner": "0xFacilitatorSigner",
            "minimum_amount": True,
        }

    def test_requirement_uses_variant_path_and_price(self, gate):
        requirement = gate.build_requirement(FOX_HIGH)

        assert requirement.resource == "/fox/high"
        assert requirement.max_amount_required == "2550"


class TestEvaluate:
    """Test the payment state machine."""

    @pytest.mark.asyncio
    async def test_no_header_is_challenge(self, gate, upstream):
        """No payment means a 402 with requirements and no facilitator traffic."""
        outcome = await gate.evaluate(FOX_LOW, None)

        assert outcome.status == PaymentStatus.CHALLENGE
        assert outcome.status_code == 402
        body = outcome.payment_required_body()
        assert body["x402Version"] == 1
        assert body["error"] is None
        assert body["accepts"][0]["maxAmountRequired"] == "1000"
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_empty_header_is_challenge(self, gate):
        outcome = await gate.evaluate(FOX_LOW, "")
        assert outcome.status == PaymentStatus.CHALLENGE

    @pytest.mark.asyncio
    async def test_malformed_header_is_400(self, gate, upstream):
        outcome = await gate.evaluate(FOX_LOW, "%%%")

        assert outcome.status == PaymentStatus.REJECTED
        assert outcome.status_code == 400
        assert "Invalid payment encoding" in outcome.reason
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_verify_then_settle(self, gate, upstream):
        """A valid payment is verified then settled with the same request body."""
        outcome = await gate.evaluate(FOX_LOW, PAYMENT_HEADER_VALUE)

        assert outcome.settled
        assert outcome.status_code == 200
        assert outcome.transaction == TX_HASH
        assert outcome.payer == PAYER

        paths = [r.url.path for r in upstream.requests]
        assert paths == ["/verify", "/settle"]

        verify_body = FakeUpstream.json_body(upstream.requests[0])
        settle_body = FakeUpstream.json_body(upstream.requests[1])
        assert verify_body == settle_body
        assert verify_body["x402Version"] == 1
        assert verify_body["paymentPayload"]["payload"]["owner"] == PAYER
        assert verify_body["paymentRequirements"]["maxAmountRequired"] == "1000"
        assert verify_body["paymentRequirements"]["payTo"] == WALLET

    @pytest.mark.asyncio
    async def test_invalid_payment(self, gate, upstream):
        """Verification failure is a 402 carrying the reason; settle is never called."""
        upstream.verify_body = {"isValid": False, "invalidReason": "insufficient_funds"}

        outcome = await gate.evaluate(FOX_LOW, PAYMENT_HEADER_VALUE)

        assert outcome.status == PaymentStatus.REJECTED
        assert outcome.status_code == 402
        assert outcome.reason == "Payment invalid: insufficient_funds"
        assert outcome.payment_required_body()["error"] == "Payment invalid: insufficient_funds"
        assert upstream.calls(FACILITATOR_HOST, "/settle") == []

    @pytest.mark.asyncio
    async def test_settlement_failure(self, gate, upstream):
        upstream.settle_body = {"success": False, "errorReason": "nonce already used"}

        outcome = await gate.evaluate(FOX_LOW, PAYMENT_HEADER_VALUE)

        assert outcome.status == PaymentStatus.REJECTED
        assert outcome.status_code == 402
        assert outcome.reason == "Settlement failed: nonce already used"
        assert outcome.payer == PAYER

    @pytest.mark.asyncio
    async def test_settlement_failure_logs_warning(self, gate, upstream, caplog):
        """Settlement failures are payment rejections, not server errors."""
        upstream.settle_body = {"success": False, "errorReason": "nonce already used"}

        with caplog.at_level(logging.WARNING, logger="app.services.payment_gate"):
            await gate.evaluate(FOX_LOW, PAYMENT_HEADER_VALUE)

        [entry] = [r for r in caplog.records if "Settlement failed" in r.getMessage()]
        assert entry.levelno == logging.WARNING

    @pytest.mark.asyncio
    async def test_payer_falls_back_to_verify(self, gate, upstream):
        upstream.settle_body = {"success": True, "transaction": TX_HASH}

        outcome = await gate.evaluate(FOX_LOW, PAYMENT_HEADER_VALUE)

        assert outcome.payer == PAYER

    @pytest.mark.asyncio
    async def test_no_reuse_between_requests(self, gate, upstream):
        """The same header is verified and settled again on every request."""
        await gate.evaluate(FOX_LOW, PAYMENT_HEADER_VALUE)
        await gate.evaluate(FOX_LOW, PAYMENT_HEADER_VALUE)

        assert len(upstream.calls(FACILITATOR_HOST, "/settle")) == 2

    @pytest.mark.asyncio
    async def test_test_mode_skips_facilitator(self, gate, upstream, test_settings):
        test_settings.X402_TEST_MODE = True

        outcome = await gate.evaluate(FOX_LOW, PAYMENT_HEADER_VALUE)

        assert outcome.settled
        assert outcome.transaction == "test-mode-no-tx"
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_test_mode_still_challenges(self, gate, test_settings):
        test_settings.X402_TEST_MODE = True

        outcome = await gate.evaluate(FOX_LOW, None)

        assert outcome.status == PaymentStatus.CHALLENGE

    @pytest.mark.asyncio
    async def test_test_mode_rejects_malformed_header(self, gate, upstream, test_settings):
        """Test mode only skips the facilitator; the header must still decode."""
        test_settings.X402_TEST_MODE = True

        outcome = await gate.evaluate(FOX_LOW, "%%%")

        assert outcome.status == PaymentStatus.REJECTED
        assert outcome.status_code == 400
        assert upstream.requests == []


class TestFacilitatorFailures:
    """Facilitator problems are upstream errors, not payment rejections."""

    @pytest.mark.asyncio
    async def test_unreachable(self, gate, upstream):
        upstream.unreachable.add(FACILITATOR_HOST)

        with pytest.raises(UpstreamError, match="Failed to contact facilitator for verify"):
            await gate.evaluate(FOX_LOW, PAYMENT_HEADER_VALUE)

    @pytest.mark.asyncio
    async def test_verify_non_2xx(self, gate, upstream):
        upstream.verify_status = 500
        upstream.verify_body = {"error": "boom"}

        with pytest.raises(UpstreamError, match="Facilitator verify error: 500") as exc_info:
            await gate.evaluate(FOX_LOW, PAYMENT_HEADER_VALUE)

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_settle_non_2xx(self, gate, upstream):
        upstream.settle_status = 503

        with pytest.raises(UpstreamError, match="Facilitator settle error: 503"):
            await gate.evaluate(FOX_LOW, PAYMENT_HEADER_VALUE)

    @pytest.mark.asyncio
    async def test_unparseable_response(self, gate, upstream):
        upstream.verify_body = {"unexpected": True}

        with pytest.raises(UpstreamError, match="Failed to parse verify response"):
            await gate.evaluate(FOX_LOW, PAYMENT_HEADER_VALUE)


class TestRequirePayment:
    """Test the raising wrapper used by the dispatcher."""

    @pytest.mark.asyncio
    async def test_returns_settled_outcome(self, gate):
        outcome = await gate.require_payment(FOX_LOW, PAYMENT_HEADER_VALUE)
        assert outcome.transaction == TX_HASH

    @pytest.mark.asyncio
    async def test_raises_on_challenge(self, gate):
        with pytest.raises(PaymentRejected) as exc_info:
            await gate.require_payment(FOX_LOW, None)

        assert exc_info.value.status_code == 402
        assert exc_info.value.outcome.status == PaymentStatus.CHALLENGE

    @pytest.mark.asyncio
    async def test_raises_400_for_bad_header(self, gate):
        with pytest.raises(PaymentRejected) as exc_info:
            await gate.require_payment(FOX_LOW, "%%%")

        assert exc_info.value.status_code == 400
        assert exc_info.value.error_type == "invalid_payment"
