import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from signdesk.core.db import Base, get_async_db
from signdesk.core.redis import get_redis_db
from signdesk.main import signdesk_app as fast_api_app
from signdesk.notifications.dispatcher import get_notification_dispatcher
from signdesk.otp.provider import get_otp_provider
from signdesk.users.models import User
from signdesk.users.utils import get_current_user
from signdesk.utils.logger import get_logger
from signdesk.utils.s3_utils import get_storage
from tests.config import (
    SIGNER_PHONE, TEST_DOCUMENT_HASH, TEST_DOCUMENT_KEY, VALID_OTP_CODE,
)
from tests.test_db import FakeOTPProvider, FakeStorage, MockRedis, RecordingDispatcher

logger = get_logger(__name__)


@pytest.fixture
def api(tmp_path):
    """TestClient with every external dependency overridden"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async def setup():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with session_factory() as db:
            user = User(email_address="owner@signdesk.test", first_name="Olivia", last_name="Owner")
            db.add(user)
            await db.commit()
            return user

    owner = asyncio.run(setup())
    redis_client, provider = MockRedis(), FakeOTPProvider()
    storage, dispatcher = FakeStorage(), RecordingDispatcher()

    async def override_get_async_db():
        async with session_factory() as session:
            yield session

    def override_get_redis_db():
        yield redis_client

    fast_api_app.dependency_overrides[get_async_db] = override_get_async_db
    fast_api_app.dependency_overrides[get_redis_db] = override_get_redis_db
    fast_api_app.dependency_overrides[get_otp_provider] = lambda: provider
    fast_api_app.dependency_overrides[get_storage] = lambda: storage
    fast_api_app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    fast_api_app.dependency_overrides[get_current_user] = lambda: owner

    client = TestClient(fast_api_app)
    client.dispatcher = dispatcher
    yield client

    fast_api_app.dependency_overrides.clear()
    asyncio.run(engine.dispose())


def create_sent_envelope(client, signers=None, **overrides):
    body = {
        "name": "Service agreement",
        "document_key": TEST_DOCUMENT_KEY,
        "document_hash": TEST_DOCUMENT_HASH,
        "signers": signers or [
            {"email": "alice@example.com", "name": "Alice", "order": 1},
            {"email": "bob@example.com", "name": "Bob", "order": 2},
        ],
    }
    body.update(overrides)
    response = client.post("/envelopes", json=body)
    assert response.status_code == 201, response.json()
    envelope = response.json()

    fields = [
        {"signer_id": signer["id"], "type": "signature", "page": 1,
         "x": 10, "y": 10 + 40 * index, "width": 100, "height": 30}
        for index, signer in enumerate(envelope["signers"])
    ]
    response = client.post(f"/envelopes/{envelope['id']}/fields", json={"fields": fields})
    assert response.status_code == 201, response.json()

    response = client.post(f"/envelopes/{envelope['id']}/send")
    assert response.status_code == 200, response.json()
    return response.json()


def token_of(link):
    return link["sign_url"].rsplit("/", 1)[-1]


def sign(client, token):
    view = client.get(f"/sign/{token}").json()
    for field in view["fields"]:
        response = client.put(f"/sign/{token}/fields/{field['id']}", json={"value": "data:image/png;base64,AAAA"})
        assert response.status_code == 200, response.json()
    return client.post(f"/sign/{token}/complete")


def test_health_check(api):
    response = api.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_full_signing_flow(api):
    sent = create_sent_envelope(api)
    assert sent["status"] == "pending"
    alice, bob = (token_of(link) for link in sent["signing_links"])

    first = sign(api, alice)
    assert first.status_code == 200
    assert first.json()["envelope_completed"] is False

    second = sign(api, bob)
    assert second.json()["envelope_status"] == "completed"

    envelope = api.get(f"/envelopes/{sent['envelope_id']}").json()
    assert envelope["status"] == "completed"
    assert [signer["status"] for signer in envelope["signers"]] == ["signed", "signed"]

    trail = api.get(f"/envelopes/{sent['envelope_id']}/audit-trail").json()
    assert trail["results"][-1]["action"] == "completed"
    assert api.get(f"/envelopes/{sent['envelope_id']}/audit-trail/verify").json()["consistent"] is True

    certificate = api.get(f"/envelopes/{sent['envelope_id']}/certificate").json()
    assert certificate["document_hash"] == TEST_DOCUMENT_HASH
    assert api.dispatcher.kinds().count("completed") == 3


def test_signing_link_errors(api):
    assert api.get("/sign/unknown-token").json() == {
        "detail": {"message": "Invalid or expired signing link", "details": {}}
    }

    sent = create_sent_envelope(api, signing_order="sequential")
    _, bob = (token_of(link) for link in sent["signing_links"])
    api.get(f"/sign/{bob}")
    assert api.post(f"/sign/{bob}/complete").status_code == 403

    response = api.post(f"/envelopes/{sent['envelope_id']}/send")
    assert response.status_code == 409
    assert response.json()["detail"]["details"]["current_state"] == "pending"


def test_missing_required_field_is_a_bad_request(api):
    sent = create_sent_envelope(api)
    token = token_of(sent["signing_links"][0])
    api.get(f"/sign/{token}")

    response = api.post(f"/sign/{token}/complete")
    assert response.status_code == 400
    assert len(response.json()["detail"]["details"]["unfilled_fields"]) == 1


def test_phone_gate_sets_access_cookie(api):
    sent = create_sent_envelope(api, signers=[
        {"email": "alice@example.com", "order": 1, "phone_2fa_required": True, "phone_2fa_number": SIGNER_PHONE},
    ])
    token = token_of(sent["signing_links"][0])

    gated = api.get(f"/sign/{token}").json()
    assert gated["verification_required"] is True
    assert gated["fields"] == []

    response = api.post(f"/sign/{token}/otp/request", json={"purpose": "document_access"})
    assert response.json()["masked_phone"] == "***7166"

    response = api.post(f"/sign/{token}/otp/verify", json={"purpose": "document_access", "code": "000000"})
    assert response.status_code == 400

    response = api.post(f"/sign/{token}/otp/verify", json={"purpose": "document_access", "code": VALID_OTP_CODE})
    assert response.status_code == 200
    assert response.json() == {"verified": True, "purpose": "document_access"}
    slug = api.get(f"/envelopes/{sent['envelope_id']}").json()["slug"]
    assert f"otp_verified_{slug}" in response.cookies

    view = api.get(f"/sign/{token}").json()
    assert view["verification_required"] is False
    assert len(view["fields"]) == 1


def test_otp_rate_limit_returns_retry_after(api):
    sent = create_sent_envelope(api, signers=[
        {"email": "alice@example.com", "order": 1, "phone_2fa_required": True, "phone_2fa_number": SIGNER_PHONE},
    ])
    token = token_of(sent["signing_links"][0])
    api.get(f"/sign/{token}")

    statuses = [
        api.post(f"/sign/{token}/otp/request", json={"purpose": "document_access"}).status_code
        for _ in range(4)
    ]
    assert statuses == [200, 200, 200, 429]

    response = api.post(f"/sign/{token}/otp/request", json={"purpose": "document_access"})
    assert response.headers["Retry-After"] == "60"


def test_decline_and_delete(api):
    sent = create_sent_envelope(api)
    token = token_of(sent["signing_links"][0])

    response = api.post(f"/sign/{token}/decline", json={"reason": "Wrong address"})
    assert response.status_code == 200
    assert response.json()["envelope_status"] == "cancelled"

    assert api.delete(f"/envelopes/{sent['envelope_id']}").status_code == 204
    assert api.get(f"/envelopes/{sent['envelope_id']}").status_code == 404
    assert api.get(f"/sign/{token}").status_code == 404


def test_envelope_listing_and_edits(api):
    sent = create_sent_envelope(api)
    envelope_id = sent["envelope_id"]

    response = api.patch(f"/envelopes/{envelope_id}/name", json={"name": "Renamed"})
    assert response.json()["name"] == "Renamed"

    response = api.get("/envelopes", params={"status": "pending"})
    assert response.json()["total"] == 1
    assert api.get("/envelopes", params={"status": "draft"}).json()["total"] == 0

    response = api.post(f"/envelopes/{envelope_id}/cancel")
    assert response.json()["status"] == "cancelled"
    assert api.post(f"/envelopes/{envelope_id}/cancel").status_code == 409


def test_drafts_cannot_be_cancelled(api):
    response = api.post("/envelopes", json={
        "name": "Draft agreement",
        "document_key": TEST_DOCUMENT_KEY,
        "document_hash": TEST_DOCUMENT_HASH,
        "signers": [{"email": "alice@example.com", "order": 1}],
    })
    envelope_id = response.json()["id"]

    response = api.post(f"/envelopes/{envelope_id}/cancel")
    assert response.status_code == 409
    assert response.json()["detail"]["details"]["current_state"] == "draft"
    assert api.delete(f"/envelopes/{envelope_id}").status_code == 204


def test_notification_inbox(api):
    response = api.get("/notifications")
    assert response.status_code == 200
    assert response.json()["unread"] == 0
    assert response.json()["items"] == []


def test_request_id_is_echoed(api):
    response = api.get("/", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert api.get("/sign/unknown-token").headers["X-Request-ID"]
