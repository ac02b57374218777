import asyncio
from typing import Callable, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from signdesk.core.db import Base
from signdesk.envelopes.schemas import EnvelopeCreate, EnvelopeFieldsCreate
from signdesk.envelopes.services import EnvelopeService
from signdesk.fields.schemas import FieldCreate, FieldType
from signdesk.notifications.dispatcher import NotificationDispatcher
from signdesk.otp.services import OTPGate
from signdesk.signers.schemas import SignerCreate
from signdesk.signers.services import SignerService
from signdesk.users.models import User
from signdesk.utils.logger import get_logger
from tests.config import (
    TEST_DOCUMENT_HASH, TEST_DOCUMENT_KEY, TEST_PREVIEW_KEY, VALID_OTP_CODE,
)
import signdesk.models  # noqa: F401

logger = get_logger(__name__)


# --- Fakes for the external services ---

class FakeStorage:
    """Object storage double recording deletions"""
    def __init__(self, fail_delete: bool = False):
        self.deleted: List[str] = []
        self.fail_delete = fail_delete

    def presign(self, key: str, ttl: int = 3600) -> str:
        return f"https://storage.test/{key}?ttl={ttl}"

    def delete(self, key: str) -> None:
        from signdesk.core.exceptions import UpstreamFailureException

        if self.fail_delete:
            raise UpstreamFailureException("Object storage delete failed", {"key": key})
        self.deleted.append(key)


class FakeOTPProvider:
    """SMS provider double; only VALID_OTP_CODE passes"""
    def __init__(self):
        self.sent: List[Dict[str, str]] = []
        self.checked: List[Dict[str, str]] = []

    def send(self, phone_number: str, reference_id: str) -> None:
        self.sent.append({"phone": phone_number, "reference_id": reference_id})

    def check(self, phone_number: str, code: str, reference_id: str) -> bool:
        self.checked.append({"phone": phone_number, "code": code, "reference_id": reference_id})
        return code == VALID_OTP_CODE


class MockRedis:
    """INCR/EXPIRE/TTL over a dict, with a clock the test can move"""
    def __init__(self):
        self.store: Dict[str, int] = {}
        self.expiry: Dict[str, float] = {}
        self.now = 0.0

    def _evict(self, key):
        if key in self.expiry and self.expiry[key] <= self.now:
            self.store.pop(key, None)
            self.expiry.pop(key, None)

    def incr(self, key):
        self._evict(key)
        self.store[key] = self.store.get(key, 0) + 1
        return self.store[key]

    def expire(self, key, seconds):
        self.expiry[key] = self.now + seconds
        return True

    def ttl(self, key):
        self._evict(key)
        if key not in self.store:
            return -2
        if key not in self.expiry:
            return -1
        return int(self.expiry[key] - self.now)

    def advance(self, seconds: float):
        self.now += seconds

    def close(self):
        pass


class RecordingDispatcher(NotificationDispatcher):
    """Dispatcher whose queue is a plain list"""
    def __init__(self):
        self.messages: List[dict] = []
        super().__init__(enqueue=self.messages.append)

    def kinds(self) -> List[str]:
        return [message["kind"] for message in self.messages]


# --- Database fixtures ---

@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite database per test"""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'signdesk.db'}", poolclass=NullPool)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def owner(db_session):
    user = User(email_address="owner@signdesk.test", first_name="Olivia", last_name="Owner")
    db_session.add(user)
    await db_session.commit()
    # Detached so a rolled back transition cannot expire it
    db_session.expunge(user)
    return user


@pytest.fixture
async def other_user(db_session):
    user = User(email_address="someone.else@signdesk.test")
    db_session.add(user)
    await db_session.commit()
    # Detached so a rolled back transition cannot expire it
    db_session.expunge(user)
    return user


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def otp_provider():
    return FakeOTPProvider()


@pytest.fixture
def mock_redis():
    """Fixture to provide a mock Redis instance."""
    return MockRedis()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def envelope_service(db_session, dispatcher, storage):
    return EnvelopeService(db=db_session, dispatcher=dispatcher, storage=storage)


@pytest.fixture
def signer_service(db_session, dispatcher, storage):
    return SignerService(db=db_session, dispatcher=dispatcher, storage=storage)


@pytest.fixture
def otp_gate(db_session, mock_redis, otp_provider, dispatcher, storage):
    return OTPGate(
        db=db_session, redis_client=mock_redis, provider=otp_provider,
        dispatcher=dispatcher, storage=storage,
    )


# --- Builders ---

def envelope_data(**overrides) -> EnvelopeCreate:
    data = {
        "name": "Service agreement",
        "message": "Please sign at your convenience",
        "document_key": TEST_DOCUMENT_KEY,
        "document_hash": TEST_DOCUMENT_HASH,
        "preview_key": TEST_PREVIEW_KEY,
        "signers": [
            {"email": "alice@example.com", "name": "Alice", "order": 1},
            {"email": "bob@example.com", "name": "Bob", "order": 2},
        ],
    }
    data.update(overrides)
    return EnvelopeCreate(**data)


def signature_fields(envelope, field_type: FieldType = FieldType.SIGNATURE, required: bool = True):
    """One field of the given type per signer"""
    return EnvelopeFieldsCreate(fields=[
        FieldCreate(
            signer_id=signer.id, type=field_type, page=1,
            x=10.0, y=20.0 + 40.0 * index, width=120.0, height=30.0, required=required,
        )
        for index, signer in enumerate(envelope.signers)
    ])


async def build_envelope(
    service: EnvelopeService,
    owner: User,
    send: bool = True,
    extra_fields: Optional[Callable] = None,
    **overrides,
):
    """Create an envelope with one signature field per signer and optionally send it"""
    envelope = await service.create_envelope(owner, envelope_data(**overrides))
    await service.add_fields(envelope.id, owner, signature_fields(envelope))
    if extra_fields is not None:
        await service.add_fields(envelope.id, owner, extra_fields(envelope))
    if send:
        await service.send_envelope(envelope.id, owner)
    return await service.get_envelope(envelope.id, owner)


def signer_by_email(envelope, email: str):
    return next(signer for signer in envelope.signers if signer.email == email)


def field_for(envelope, signer, field_type: FieldType = FieldType.SIGNATURE):
    return next(
        field for field in envelope.fields
        if field.signer_id == signer.id and field.type == field_type
    )


async def view_fill_and_sign(service: SignerService, envelope, signer):
    """The full happy path for one signer"""
    await service.get_signer_view(signer.token)
    for field in envelope.fields:
        if field.signer_id == signer.id:
            await service.record_field_value(signer.token, field.id, "data:image/png;base64,iVBORw0KGgo=")
    return await service.mark_signed(signer.token)


def run(coro):
    """Run a coroutine from a synchronous API test"""
    return asyncio.run(coro)
