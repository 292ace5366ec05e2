"""
Monthly balance use cases - read-only balance history of a client
"""
import logging

from sqlalchemy.orm import Session

from clientbilling.application.loaders import (
    get_client,
    invoiced_excess_by_month,
    load_agreements,
    load_linked_minutes,
    load_time_entries,
)
from clientbilling.domain.balances import MonthSummary, calculate_monthly_balances
from clientbilling.domain.months import YearMonth

logger = logging.getLogger(__name__)


class GetMonthlyBalancesUseCase:
    """
    Use case: month-by-month hour balances of a client, most recent first

    No writes; safe to call from any request handler.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(self, client_id: int, through: YearMonth | None = None) -> list[MonthSummary]:
        """
        Args:
            client_id: client company ID
            through: extend the history up to this month (e.g. the current month)

        Returns:
            list of MonthSummary, newest month first

        Raises:
            BillingNotFoundError: unknown client
            BillingValidationError: overlapping agreements
        """
        get_client(self.db, client_id)
        agreements = load_agreements(self.db, client_id)
        entries = load_time_entries(self.db, client_id)
        invoiced_excess = invoiced_excess_by_month(load_linked_minutes(self.db, client_id))

        summaries = calculate_monthly_balances(agreements, entries, invoiced_excess, through=through)
        logger.debug("Client %s: %d month balances", client_id, len(summaries))
        return summaries
