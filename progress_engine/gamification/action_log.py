"""
Action Log

Append-only record of point-worthy user events. Each event is appended at
most once per (user_id, idempotency_key): a retried append returns the
original event id flagged as a duplicate and writes nothing.

The log is passive. It never triggers streak, achievement or point updates
itself; the progress service does that inside the same unit of work.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4
import logging

from progress_engine.config import MAX_CLOCK_SKEW_SECONDS
from progress_engine.db.store import ProgressStore, UserTransaction
from progress_engine.exceptions import RecordNotFoundError, ValidationError
from progress_engine.gamification.points_ledger import joined_transaction
from progress_engine.models.progress import ActionEvent, AppendResult
from progress_engine.observability.metrics import actions_voided_total

logger = logging.getLogger(__name__)


def to_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC"""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def check_not_future(
    occurred_at: datetime,
    now: Optional[datetime] = None,
    max_skew_seconds: Optional[int] = None
) -> datetime:
    """
    Reject timestamps further into the future than the allowed clock skew

    Returns:
        The timestamp in UTC

    Raises:
        ValidationError: occurred_at is later than now plus the skew
    """
    occurred_at = to_utc(occurred_at)
    now = to_utc(now) if now else datetime.now(timezone.utc)
    skew = MAX_CLOCK_SKEW_SECONDS if max_skew_seconds is None else max_skew_seconds
    if occurred_at > now + timedelta(seconds=skew):
        raise ValidationError(
            f"Action timestamp {occurred_at.isoformat()} is in the future",
            field="timestamp",
            value=occurred_at.isoformat()
        )
    return occurred_at


def new_event(
    user_id: str,
    action_type: str,
    occurred_at: datetime,
    idempotency_key: str,
    metadata: Optional[Dict[str, Any]] = None
) -> ActionEvent:
    """Build an ActionEvent with a fresh event id"""
    return ActionEvent(
        event_id=str(uuid4()),
        user_id=user_id,
        action_type=action_type,
        occurred_at=to_utc(occurred_at),
        idempotency_key=idempotency_key,
        metadata=metadata or {},
    )


class ActionLog:
    """Idempotent, append-only event log"""

    def __init__(self, store: ProgressStore):
        self.store = store

    async def append(
        self,
        event: ActionEvent,
        tx: Optional[UserTransaction] = None
    ) -> AppendResult:
        """
        Append an event once per idempotency key

        Args:
            event: Event to append
            tx: Unit of work to join (optional)

        Returns:
            AppendResult with the stored event id; duplicate=True if the key
            was already present
        """
        async with joined_transaction(self.store, event.user_id, tx) as unit:
            existing = await unit.find_event(event.idempotency_key)
            if existing is not None:
                logger.info(
                    f"Duplicate action for user {event.user_id} "
                    f"(key={event.idempotency_key}), returning event {existing.event_id}"
                )
                return AppendResult(event_id=existing.event_id, duplicate=True)

            if event.occurred_at.tzinfo is None:
                event = event.model_copy(update={"occurred_at": to_utc(event.occurred_at)})
            await unit.append_event(event)

        logger.debug(f"Appended {event.action_type} event {event.event_id} for user {event.user_id}")
        return AppendResult(event_id=event.event_id, duplicate=False)

    async def void(
        self,
        user_id: str,
        event_id: str,
        tx: Optional[UserTransaction] = None
    ) -> ActionEvent:
        """
        Soft-delete an event: it stays in the log but no longer counts toward
        impact scores. Points already credited are not reversed. Voiding an
        already voided event is a no-op.

        Raises:
            RecordNotFoundError: the user has no event with this id
        """
        async with joined_transaction(self.store, user_id, tx) as unit:
            event = await unit.get_event(event_id)
            if event is None:
                raise RecordNotFoundError(
                    f"Event {event_id} not found for user {user_id}",
                    record_type="ActionEvent",
                    record_id=event_id
                )
            if event.voided:
                return event
            await unit.void_event(event_id)

        actions_voided_total.labels(action_type=event.action_type).inc()
        logger.info(f"Voided {event.action_type} event {event_id} for user {user_id}")
        return event.model_copy(update={"voided": True})

    async def event_for_key(self, user_id: str, idempotency_key: str) -> Optional[ActionEvent]:
        """Look up a previously appended event by idempotency key"""
        async with self.store.transaction(user_id) as unit:
            return await unit.find_event(idempotency_key)

    async def list_since(
        self,
        user_id: Optional[str],
        action_type: Optional[str],
        since: Optional[datetime]
    ) -> List[ActionEvent]:
        """Non-voided events, oldest first"""
        if since is not None:
            since = to_utc(since)
        return await self.store.list_events(user_id=user_id, action_type=action_type, since=since)
