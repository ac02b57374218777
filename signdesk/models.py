# signdesk/models.py

"""
Imports every model so relationships resolve and the metadata is complete.
"""

from signdesk.users.models import User
from signdesk.envelopes.models import Envelope
from signdesk.signers.models import Signer
from signdesk.fields.models import Field
from signdesk.audit_trail.models import AuditLog
from signdesk.notifications.models import Notification

__all__ = ["User", "Envelope", "Signer", "Field", "AuditLog", "Notification"]
