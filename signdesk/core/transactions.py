## signdesk/core/transactions.py

"""
Optimistic-lock retry loop shared by the workflow services.
"""

# Standard library imports
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

# Third party imports
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

# Local imports
from signdesk.core.config import settings
from signdesk.core.exceptions import InvalidStateException
from signdesk.notifications.dispatcher import NotificationDispatcher
from signdesk.notifications.schemas import NotificationKind
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class TransactionalService:
    """
    Base for services whose operations read derived state and then write it.

    Each operation runs as one transaction. A concurrent writer that bumped a
    version column first makes the flush fail with StaleDataError; the whole
    operation is then rolled back and replayed on fresh rows. Notifications
    queued during an attempt are dispatched only after its commit.
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
        max_retries: Optional[int] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.max_retries = max_retries or settings.transition_max_retries
        self._outbox: List[Dict[str, Any]] = []

    def notify(self, user_id: Optional[int], kind: NotificationKind, payload: Dict[str, Any]) -> None:
        """Queue a notification for delivery once the transaction commits"""
        self._outbox.append({"user_id": user_id, "kind": kind, "payload": payload})

    async def run_transition(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation`, commit, then flush the notification outbox."""
        for attempt in range(1, self.max_retries + 1):
            self._outbox = []
            try:
                result = await operation()
                await self.db.commit()
            except StaleDataError:
                await self.db.rollback()
                logger.warning("Concurrent update detected, retrying", operation=name, attempt=attempt)
                continue
            except Exception:
                await self.db.rollback()
                raise

            outbox, self._outbox = self._outbox, []
            for item in outbox:
                self.dispatcher.dispatch(item["user_id"], item["kind"], item["payload"])
            return result

        logger.error("Giving up after concurrent updates", operation=name, attempts=self.max_retries)
        raise InvalidStateException(
            "contended", name, "the record was modified concurrently, please retry"
        )
