"""
Time entry use cases - logging, soft removal and fragment recombination
"""
import logging
from datetime import date, datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clientbilling.application.loaders import get_client
from clientbilling.domain.errors import (
    BillingConflictError,
    BillingNotFoundError,
    BillingPersistenceError,
    BillingValidationError,
)
from clientbilling.infrastructure.db.models import ClientTimeEntry

logger = logging.getLogger(__name__)


def merge_key(entry: ClientTimeEntry) -> tuple:
    """Rows with the same key are fragments of one logged unit of work."""
    return (
        entry.date_worked,
        entry.user_id,
        entry.name,
        entry.project_id,
        entry.task_id,
        entry.is_billable,
    )


def recombine_fragments(db: Session, client_id: int) -> int:
    """
    Merge sibling time entry rows back into one row (no commit).

    A group is merged only when every row sharing its merge key is unlinked:
    the lowest id keeps the summed minutes, the others are soft-deleted.

    Returns:
        number of rows merged away
    """
    rows = db.query(ClientTimeEntry).filter(
        ClientTimeEntry.client_company_id == client_id,
        ClientTimeEntry.deleted_at.is_(None),
    ).order_by(ClientTimeEntry.id).all()

    groups: dict[tuple, list[ClientTimeEntry]] = {}
    for row in rows:
        groups.setdefault(merge_key(row), []).append(row)

    merged = 0
    now = datetime.now(timezone.utc)
    for group in groups.values():
        if len(group) < 2:
            continue
        if any(row.client_invoice_line_id is not None for row in group):
            continue
        primary, rest = group[0], group[1:]
        primary.minutes_worked = sum(row.minutes_worked for row in group)
        for row in rest:
            row.deleted_at = now
        merged += len(rest)

    if merged:
        db.flush()
        logger.info("Client %s: recombined %d time entry fragments", client_id, merged)
    return merged


class LogTimeEntryUseCase:
    """Use case: log a unit of work for a client"""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        client_id: int,
        minutes_worked: int,
        date_worked: date,
        name: str = "",
        is_billable: bool = True,
        user_id: int | None = None,
        project_id: int | None = None,
        task_id: int | None = None,
    ) -> ClientTimeEntry:
        if minutes_worked <= 0:
            raise BillingValidationError("minutes_worked must be positive")

        get_client(self.db, client_id)

        entry = ClientTimeEntry(
            client_company_id=client_id,
            minutes_worked=minutes_worked,
            date_worked=date_worked,
            name=name.strip(),
            is_billable=is_billable,
            user_id=user_id,
            project_id=project_id,
            task_id=task_id,
        )
        self.db.add(entry)
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to log time entry for client %s", client_id)
            raise BillingPersistenceError("Could not save time entry") from exc

        self.db.refresh(entry)
        return entry


class DeleteTimeEntryUseCase:
    """
    Use case: soft-remove a time entry

    Entries linked to an invoice line are immutable; void the invoice first.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(self, client_id: int, entry_id: int) -> None:
        entry = self.db.query(ClientTimeEntry).filter(
            ClientTimeEntry.id == entry_id,
            ClientTimeEntry.client_company_id == client_id,
            ClientTimeEntry.deleted_at.is_(None),
        ).first()

        if not entry:
            raise BillingNotFoundError(f"Time entry #{entry_id} not found")

        if entry.client_invoice_line_id is not None:
            raise BillingConflictError(
                f"Time entry #{entry_id} is linked to invoice line #{entry.client_invoice_line_id}"
            )

        entry.deleted_at = datetime.now(timezone.utc)
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to delete time entry %s", entry_id)
            raise BillingPersistenceError("Could not delete time entry") from exc


class RecombineFragmentsUseCase:
    """Use case: merge unlinked split fragments of a client back together"""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, client_id: int) -> int:
        get_client(self.db, client_id)
        try:
            merged = recombine_fragments(self.db, client_id)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to recombine fragments for client %s", client_id)
            raise BillingPersistenceError("Could not recombine time entries") from exc
        return merged
