"""Delivery of due scheduled invoice emails.

One run selects every pending schedule whose send time has passed and that
has an invoice PDF stored, then handles the invoices one after another. A
failure is recorded on that invoice (``failed`` + error message) and the run
moves on; nothing is retried automatically, a new schedule must be issued.

There is no claim step: a sweep and a manual send of the same invoice can
both deliver it. Runs are expected not to overlap (the arq cron job is
unique per hour).
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from services.email.service import EmailService
from services.invoices.delivery import build_invoice_message
from services.invoices.models import Invoice, utcnow
from services.invoices.repository import InvoiceRepository
from services.invoices.schedule import Failed, Sent
from services.invoices.schema import parse_email_list
from services.storage.service import StorageService

logger = logging.getLogger(__name__)

REQUIRED_PAYLOAD_FIELDS = ("from_email", "subject", "content")


class SweepResult(BaseModel):
    """Counts for one sweep run."""

    selected: int = 0
    sent: int = 0
    failed: int = 0


def _has_required_fields(data: Any) -> bool:
    # Recipients only need to be present here; an empty list fails as "No recipient emails"
    return (
        isinstance(data, Mapping)
        and data.get("to_emails") is not None
        and all(data.get(name) for name in REQUIRED_PAYLOAD_FIELDS)
    )


class ScheduledInvoiceSweep:
    def __init__(
        self, invoices: InvoiceRepository, storage: StorageService, email: EmailService
    ) -> None:
        self.invoices = invoices
        self.storage = storage
        self.email = email

    def run(self, now: datetime | None = None) -> SweepResult:
        """Deliver every schedule due at ``now`` (defaults to the current UTC time)."""
        now = now or utcnow()
        due = self.invoices.find_due_scheduled(now)
        result = SweepResult(selected=len(due))

        for invoice in due:
            if self._deliver(invoice):
                result.sent += 1
            else:
                result.failed += 1

        if result.selected:
            logger.info(f"Send scheduled invoices: {result.sent} sent, {result.failed} failed")
        return result

    def _deliver(self, invoice: Invoice) -> bool:
        try:
            data = invoice.scheduled_email_data
            if not _has_required_fields(data):
                self._mark_failed(invoice.id, "Missing scheduled email data or required email fields")
                return False
            if not parse_email_list(data["to_emails"]):
                self._mark_failed(invoice.id, "No recipient emails")
                return False

            message = build_invoice_message(self.storage, invoice, data)
            self.email.send(message)

            self.invoices.update(invoice.id, sent=True, **Sent(sent_at=utcnow()).fields())
            logger.info(f"Delivered scheduled invoice {invoice.id}")
            return True
        except Exception as e:
            logger.exception(f"Failed to send scheduled invoice {invoice.id}: {e}")
            self._mark_failed(invoice.id, str(e) or e.__class__.__name__)
            return False

    def _mark_failed(self, invoice_id: int, error: str) -> None:
        try:
            self.invoices.update(invoice_id, **Failed(error=error).fields())
        except Exception as e:
            logger.error(f"Failed to update invoice {invoice_id} status: {e}")
