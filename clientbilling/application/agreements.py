"""
Agreement use cases - creating and terminating billing agreements

Agreement terms are immutable once created; only the termination date can be set.
"""
import logging
from dataclasses import replace
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clientbilling.application.loaders import get_client, load_agreements, to_agreement
from clientbilling.domain.agreement import Agreement, validate_agreements
from clientbilling.domain.errors import (
    BillingNotFoundError,
    BillingPersistenceError,
    BillingValidationError,
)
from clientbilling.infrastructure.db.models import ClientAgreement

logger = logging.getLogger(__name__)


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to %s", action)
        raise BillingPersistenceError(f"Could not {action}") from exc


class CreateAgreementUseCase:
    """
    Use case: create a billing agreement

    Validation:
    - terms are checked by the Agreement value object
    - the new interval must not overlap any existing agreement of the client
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        client_id: int,
        active_from: date,
        monthly_retainer_hours: Decimal,
        rollover_months: int,
        hourly_rate: Decimal,
        monthly_fee: Decimal,
        terminated_at: date | None = None,
        catch_up_threshold_hours: Decimal = Decimal(0),
    ) -> ClientAgreement:
        get_client(self.db, client_id)

        # id 0 stands in for the not-yet-inserted row
        candidate = Agreement(
            id=0,
            active_from=active_from,
            terminated_at=terminated_at,
            monthly_retainer_hours=monthly_retainer_hours,
            rollover_months=rollover_months,
            hourly_rate=hourly_rate,
            monthly_fee=monthly_fee,
            catch_up_threshold_hours=catch_up_threshold_hours,
        )
        validate_agreements(load_agreements(self.db, client_id) + [candidate])

        row = ClientAgreement(
            client_company_id=client_id,
            active_date=active_from,
            termination_date=terminated_at,
            monthly_retainer_hours=monthly_retainer_hours,
            rollover_months=rollover_months,
            hourly_rate=hourly_rate,
            monthly_retainer_fee=monthly_fee,
            catch_up_threshold_hours=catch_up_threshold_hours,
        )
        self.db.add(row)
        _commit(self.db, "create agreement")
        self.db.refresh(row)

        logger.info("Client %s: agreement #%s active from %s", client_id, row.id, active_from)
        return row


class TerminateAgreementUseCase:
    """Use case: set the (exclusive) termination date of an agreement"""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, client_id: int, agreement_id: int, terminated_at: date) -> ClientAgreement:
        row = self.db.query(ClientAgreement).filter(
            ClientAgreement.id == agreement_id,
            ClientAgreement.client_company_id == client_id,
            ClientAgreement.deleted_at.is_(None),
        ).first()

        if not row:
            raise BillingNotFoundError(f"Agreement #{agreement_id} not found")

        if row.termination_date is not None:
            raise BillingValidationError(f"Agreement #{agreement_id} is already terminated")

        # Construction re-checks terminated_at > active_from
        replace(to_agreement(row), terminated_at=terminated_at)

        row.termination_date = terminated_at
        _commit(self.db, "terminate agreement")
        self.db.refresh(row)
        return row
