import boto3
import pytest
from botocore.stub import Stubber

from signdesk.audit_trail.schemas import AuditAction, VerificationPurpose
from signdesk.core.exceptions import (
    ForbiddenException, InvalidStateException, RateLimitedException,
    UpstreamFailureException, ValidationFailedException, VerificationFailedException,
)
from signdesk.core.jwt import verify_access_grant
from signdesk.envelopes.schemas import EnvelopeFieldsCreate
from signdesk.fields.schemas import FieldCreate, FieldType
from signdesk.otp.provider import PinpointOTPProvider, otp_reference_id
from signdesk.otp.rate_limit import RateLimiter, rate_limit_key
from signdesk.otp.utils import format_phone, mask_phone_for_audit, mask_phone_for_display
from signdesk.signers.schemas import SignerStatus
from tests.config import SIGNER_PHONE, SIGNER_PHONE_CANONICAL, VALID_OTP_CODE
from tests.test_db import build_envelope, field_for

GATED_SIGNERS = [
    {"email": "alice@example.com", "name": "Alice", "order": 1,
     "phone_2fa_required": True, "phone_2fa_number": SIGNER_PHONE},
]


def phone_fields(envelope):
    return EnvelopeFieldsCreate(fields=[
        FieldCreate(signer_id=signer.id, type=FieldType.PHONE, label="Mobile", page=1,
                    x=10, y=300, width=120, height=20)
        for signer in envelope.signers
    ])


# --- Phone helpers ---

def test_phone_formatting_and_masking():
    assert format_phone(SIGNER_PHONE) == SIGNER_PHONE_CANONICAL
    assert format_phone("+1 (415) 555-0142") == "+14155550142"
    with pytest.raises(ValidationFailedException):
        format_phone("0612")

    assert mask_phone_for_display(SIGNER_PHONE_CANONICAL) == "***7166"
    assert mask_phone_for_audit(SIGNER_PHONE_CANONICAL) == "+33***7166"


def test_reference_id_is_scoped():
    first = otp_reference_id("document_access", "abc123", 1)
    assert first == otp_reference_id("document_access", "abc123", 1)
    assert first != otp_reference_id("field_verification", "abc123", 1)
    assert first != otp_reference_id("document_access", "abc123", 2)
    assert len(first) == 32


# --- Rate limiting ---

def test_rate_limit_refuses_past_the_limit_until_the_window_ends(mock_redis):
    limiter = RateLimiter(mock_redis, limit=3, window_seconds=60)
    key = rate_limit_key("document_access", SIGNER_PHONE_CANONICAL)

    assert [limiter.hit(key) for _ in range(3)] == [1, 2, 3]
    with pytest.raises(RateLimitedException) as exc_info:
        limiter.hit(key)
    assert exc_info.value.details == {"limit": 3, "retry_after": 60}

    mock_redis.advance(61)
    assert limiter.hit(key) == 1


def test_rate_limit_repairs_a_key_without_expiry(mock_redis):
    limiter = RateLimiter(mock_redis, limit=1, window_seconds=30)
    mock_redis.store["otp:document_access:+1"] = 5

    with pytest.raises(RateLimitedException) as exc_info:
        limiter.hit("otp:document_access:+1")
    assert exc_info.value.details["retry_after"] == 30
    assert mock_redis.ttl("otp:document_access:+1") == 30


# --- Pinpoint provider ---

@pytest.fixture
def pinpoint():
    client = boto3.client("pinpoint", region_name="us-east-1",
                          aws_access_key_id="testing", aws_secret_access_key="testing")
    provider = PinpointOTPProvider(client=client)
    provider.application_id = "app-123"
    provider.origination_number = "+15550100"
    with Stubber(client) as stubber:
        yield provider, stubber


def test_provider_send(pinpoint):
    provider, stubber = pinpoint
    stubber.add_response(
        "send_otp_message",
        {"MessageResponse": {"ApplicationId": "app-123", "Result": {
            SIGNER_PHONE_CANONICAL: {"DeliveryStatus": "SUCCESSFUL", "StatusCode": 200},
        }}},
    )
    provider.send(SIGNER_PHONE_CANONICAL, "ref")

    stubber.add_response(
        "send_otp_message",
        {"MessageResponse": {"ApplicationId": "app-123", "Result": {
            SIGNER_PHONE_CANONICAL: {"DeliveryStatus": "PERMANENT_FAILURE", "StatusCode": 400},
        }}},
    )
    with pytest.raises(UpstreamFailureException):
        provider.send(SIGNER_PHONE_CANONICAL, "ref")

    stubber.add_client_error("send_otp_message", service_error_code="TooManyRequestsException")
    with pytest.raises(UpstreamFailureException):
        provider.send(SIGNER_PHONE_CANONICAL, "ref")


def test_provider_check(pinpoint):
    provider, stubber = pinpoint
    stubber.add_response("verify_otp_message", {"VerificationResponse": {"Valid": True}})
    stubber.add_response("verify_otp_message", {"VerificationResponse": {"Valid": False}})
    stubber.add_client_error("verify_otp_message", service_error_code="BadRequestException")

    assert provider.check(SIGNER_PHONE_CANONICAL, "123456", "ref") is True
    assert provider.check(SIGNER_PHONE_CANONICAL, "000000", "ref") is False
    with pytest.raises(VerificationFailedException):
        provider.check(SIGNER_PHONE_CANONICAL, "123456", "ref")


# --- Document access ---

async def test_gated_signer_sees_nothing_before_verification(envelope_service, signer_service, owner):
    envelope = await build_envelope(envelope_service, owner, signers=GATED_SIGNERS)
    signer = envelope.signers[0]

    view = await signer_service.get_signer_view(signer.token)

    assert view.verification_required is True
    assert view.masked_phone == "***7166"
    assert view.fields == []
    assert view.document_url is None
    with pytest.raises(ForbiddenException):
        await signer_service.record_field_value(signer.token, field_for(envelope, signer).id, "x")


async def test_document_access_must_follow_a_view(envelope_service, otp_gate, owner, otp_provider):
    envelope = await build_envelope(envelope_service, owner, signers=GATED_SIGNERS)

    with pytest.raises(InvalidStateException):
        await otp_gate.request_challenge(envelope.signers[0].token, VerificationPurpose.DOCUMENT_ACCESS)
    assert otp_provider.sent == []


async def test_document_access_verification(envelope_service, signer_service, otp_gate, owner, otp_provider):
    envelope = await build_envelope(envelope_service, owner, signers=GATED_SIGNERS)
    signer = envelope.signers[0]
    await signer_service.get_signer_view(signer.token)

    challenge = await otp_gate.request_challenge(signer.token, VerificationPurpose.DOCUMENT_ACCESS)
    assert challenge.masked_phone == "***7166"
    assert otp_provider.sent[0]["phone"] == SIGNER_PHONE_CANONICAL

    outcome = await otp_gate.check_challenge(signer.token, VALID_OTP_CODE, VerificationPurpose.DOCUMENT_ACCESS)
    assert outcome.canonical_phone == SIGNER_PHONE_CANONICAL
    assert verify_access_grant(outcome.access_grant, envelope.slug, signer.id)
    assert not verify_access_grant(outcome.access_grant, "another-slug", signer.id)
    assert otp_provider.checked[0]["reference_id"] == otp_provider.sent[0]["reference_id"]

    view = await signer_service.get_signer_view(signer.token)
    assert view.signer.status == SignerStatus.VERIFIED
    assert view.verification_required is False
    assert len(view.fields) == 1

    entries = await envelope_service.audit.list_by_envelope(envelope.id)
    verified = [entry for entry in entries if entry.action == AuditAction.PHONE_VERIFIED]
    assert len(verified) == 1
    assert verified[0].details["phone"] == "+33***7166"
    assert verified[0].details["canonical_phone"] == SIGNER_PHONE_CANONICAL
    assert verified[0].details["purpose"] == "document_access"


async def test_wrong_code_writes_nothing(envelope_service, signer_service, otp_gate, owner):
    envelope = await build_envelope(envelope_service, owner, signers=GATED_SIGNERS)
    envelope_id, token = envelope.id, envelope.signers[0].token
    await signer_service.get_signer_view(token)
    before = len(await envelope_service.audit.list_by_envelope(envelope_id))

    with pytest.raises(VerificationFailedException):
        await otp_gate.check_challenge(token, "000000", VerificationPurpose.DOCUMENT_ACCESS)

    assert len(await envelope_service.audit.list_by_envelope(envelope_id)) == before
    assert await envelope_service.audit.count_action(envelope_id, AuditAction.PHONE_VERIFIED) == 0
    view = await signer_service.get_signer_view(token)
    assert view.signer.status == SignerStatus.VIEWED


async def test_mismatched_phone_is_forbidden(envelope_service, signer_service, otp_gate, owner):
    envelope = await build_envelope(envelope_service, owner, signers=GATED_SIGNERS)
    signer = envelope.signers[0]
    await signer_service.get_signer_view(signer.token)

    with pytest.raises(ForbiddenException):
        await otp_gate.request_challenge(signer.token, VerificationPurpose.DOCUMENT_ACCESS, phone="+14155550142")


async def test_challenge_requests_are_rate_limited(envelope_service, signer_service, otp_gate, owner, otp_provider):
    envelope = await build_envelope(envelope_service, owner, signers=GATED_SIGNERS)
    signer = envelope.signers[0]
    await signer_service.get_signer_view(signer.token)

    for _ in range(3):
        await otp_gate.request_challenge(signer.token, VerificationPurpose.DOCUMENT_ACCESS)
    with pytest.raises(RateLimitedException):
        await otp_gate.request_challenge(signer.token, VerificationPurpose.DOCUMENT_ACCESS)
    assert len(otp_provider.sent) == 3


# --- Phone field verification ---

async def test_phone_field_verification(envelope_service, signer_service, otp_gate, owner):
    envelope = await build_envelope(envelope_service, owner, extra_fields=phone_fields)
    envelope_id = envelope.id
    signer = envelope.signers[0]
    token = signer.token
    phone_field_id = field_for(envelope, signer, FieldType.PHONE).id
    signature_field_id = field_for(envelope, signer).id
    await signer_service.get_signer_view(token)

    with pytest.raises(ValidationFailedException):
        await otp_gate.request_challenge(token, VerificationPurpose.FIELD_VERIFICATION, phone=SIGNER_PHONE)
    with pytest.raises(ValidationFailedException):
        await otp_gate.request_challenge(
            token, VerificationPurpose.FIELD_VERIFICATION,
            phone=SIGNER_PHONE, field_id=signature_field_id,
        )

    await otp_gate.request_challenge(
        token, VerificationPurpose.FIELD_VERIFICATION, phone=SIGNER_PHONE, field_id=phone_field_id,
    )
    outcome = await otp_gate.check_challenge(
        token, VALID_OTP_CODE, VerificationPurpose.FIELD_VERIFICATION,
        phone=SIGNER_PHONE, field_id=phone_field_id,
    )
    assert outcome.access_grant is None

    verified_field = await signer_service.fields.repo.get_by_id(phone_field_id)
    assert verified_field.value == SIGNER_PHONE_CANONICAL
    assert verified_field.verified_at is not None
    entry = (await envelope_service.audit.list_by_envelope(envelope_id))[-1]
    assert entry.action == AuditAction.PHONE_VERIFIED
    assert entry.details["field_id"] == phone_field_id

    # Editing the number drops the verification
    updated = await signer_service.record_field_value(token, phone_field_id, "+14155550142")
    assert updated.verified_at is None


async def test_field_verification_respects_field_ownership(envelope_service, signer_service, otp_gate, owner):
    envelope = await build_envelope(envelope_service, owner, extra_fields=phone_fields)
    alice, bob = envelope.signers
    await signer_service.get_signer_view(alice.token)

    with pytest.raises(ForbiddenException):
        await otp_gate.request_challenge(
            alice.token, VerificationPurpose.FIELD_VERIFICATION,
            phone=SIGNER_PHONE, field_id=field_for(envelope, bob, FieldType.PHONE).id,
        )
