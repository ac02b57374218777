import pytest

from signdesk.core.exceptions import InvalidStateException, NotFoundException
from signdesk.core.transactions import TransactionalService
from signdesk.notifications.dispatcher import NotificationDispatcher
from signdesk.notifications.schemas import NotificationKind
from signdesk.notifications.services import NotificationService, render_message
from signdesk.users.models import User
from sqlalchemy.orm.exc import StaleDataError


class RecordingMailer:
    def __init__(self):
        self.sent = []

    async def send_templated_email(self, *, to_emails, subject, template_name, context):
        self.sent.append({"to": to_emails, "subject": subject, "template": template_name, "context": context})


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def notification_service(db_session, mailer):
    return NotificationService(db=db_session, mailer=mailer)


def message(kind, user_id=None, **payload):
    base = {"envelope_id": 7, "envelope_slug": "aBcDeFgHiJ", "envelope_name": "Lease renewal"}
    base.update(payload)
    return {"user_id": user_id, "kind": kind.value, "payload": base}


# --- Dispatch ---

def test_dispatch_enqueues_a_plain_message():
    queue = []
    dispatcher = NotificationDispatcher(enqueue=queue.append)

    assert dispatcher.dispatch(3, NotificationKind.SIGNED, {"envelope_id": 7}) is True
    assert queue == [{"user_id": 3, "kind": "signed", "payload": {"envelope_id": 7}}]


def test_dispatch_failure_is_swallowed():
    def broken(_message):
        raise ConnectionError("broker unavailable")

    assert NotificationDispatcher(enqueue=broken).dispatch(3, NotificationKind.SIGNED) is False


async def test_outbox_is_dropped_when_the_transition_fails(db_session):
    queue = []
    service = TransactionalService(db_session, NotificationDispatcher(enqueue=queue.append))

    async def failing():
        service.notify(1, NotificationKind.SIGNED, {})
        raise NotFoundException("Signer")

    with pytest.raises(NotFoundException):
        await service.run_transition("sign", failing)
    assert queue == []


async def test_outbox_survives_only_the_committed_attempt(db_session):
    queue = []
    service = TransactionalService(db_session, NotificationDispatcher(enqueue=queue.append), max_retries=3)
    attempts = []

    async def contended():
        attempts.append(len(attempts) + 1)
        service.notify(1, NotificationKind.COMPLETED, {"attempt": len(attempts)})
        if len(attempts) < 2:
            raise StaleDataError("version mismatch")
        return "done"

    assert await service.run_transition("complete", contended) == "done"
    assert [item["payload"]["attempt"] for item in queue] == [2]


async def test_retries_are_bounded(db_session):
    service = TransactionalService(db_session, NotificationDispatcher(enqueue=lambda _m: None), max_retries=2)

    async def always_stale():
        raise StaleDataError("version mismatch")

    with pytest.raises(InvalidStateException):
        await service.run_transition("sign", always_stale)


# --- Delivery ---

def test_render_message():
    assert render_message(NotificationKind.INVITATION, {"sender_name": "Olivia"}) == \
        "Olivia invited you to sign this document"
    assert render_message(NotificationKind.REJECTED, {"signer_name": "Bob", "reason": "Typo"}) == \
        "Bob declined to sign the document: Typo"
    assert render_message(NotificationKind.COMPLETED, {}) == "The document has been signed by all signers"


async def test_invitation_to_a_registered_user(notification_service, mailer, db_session):
    invitee = User(email_address="alice@example.com", first_name="Alice")
    db_session.add(invitee)
    await db_session.commit()

    notification = await notification_service.deliver(message(
        NotificationKind.INVITATION, recipient_email="alice@example.com",
        sender_name="Olivia Owner", sign_url="https://sign.example.test/sign/token",
    ))

    assert notification.user_id == invitee.id
    assert notification.title == "Lease renewal"
    assert notification.message == "Olivia Owner invited you to sign this document"
    assert mailer.sent[0]["to"] == ["alice@example.com"]
    assert mailer.sent[0]["template"] == "invitation.html"


async def test_invitation_to_an_unknown_email_is_mail_only(notification_service, mailer):
    notification = await notification_service.deliver(message(
        NotificationKind.INVITATION, recipient_email="stranger@example.com", sender_name="Olivia",
    ))

    assert notification is None
    assert [mail["to"] for mail in mailer.sent] == [["stranger@example.com"]]


async def test_owner_notifications(notification_service, mailer, owner):
    signed = await notification_service.deliver(message(
        NotificationKind.SIGNED, user_id=owner.id, signer_email="bob@example.com", signer_name="Bob",
    ))
    assert signed.message == "Bob signed the document"
    assert mailer.sent == []

    await notification_service.deliver(message(NotificationKind.COMPLETED, user_id=owner.id))
    assert mailer.sent[0]["to"] == [owner.email_address]
    assert mailer.sent[0]["template"] == "completed.html"

    listing = await notification_service.list_notifications(owner)
    assert listing.unread == 2
    assert [item.kind for item in listing.items] == [NotificationKind.COMPLETED, NotificationKind.SIGNED]


async def test_mark_read(notification_service, owner, other_user):
    notification = await notification_service.deliver(message(NotificationKind.SIGNED, user_id=owner.id))

    with pytest.raises(NotFoundException):
        await notification_service.mark_read(notification.id, other_user)

    await notification_service.mark_read(notification.id, owner)
    listing = await notification_service.list_notifications(owner, unread_only=True)
    assert listing.unread == 0
    assert listing.items == []


def test_email_templates_render():
    from signdesk.utils.email_service import email_service

    html = email_service.render_template("invitation.html", {
        "recipient_name": "Alice", "sender_name": "Olivia", "envelope_name": "Lease <renewal>",
        "sign_url": "https://sign.example.test/sign/token",
    })
    assert "https://sign.example.test/sign/token" in html
    assert "Lease &lt;renewal&gt;" in html
