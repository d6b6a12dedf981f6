"""Explicit schedule state for an invoice's scheduled email delivery.

The invoice table stores the schedule as five independent columns. This
module reads them into one tagged variant per status, so a record such as
"sent without a sent timestamp" fails validation instead of flowing through
the code, and it produces the exact column writes for each transition.

Lifecycle::

    Unscheduled/Failed/Cancelled/Sent --schedule_send--> Pending
    Pending --cancel_schedule--> Cancelled
    Pending --sweep success--> Sent
    Pending --sweep error--> Failed
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from services.invoices.models import Invoice, ScheduledStatus


class _State(BaseModel):
    model_config = ConfigDict(frozen=True)


class _Transition(_State, ABC):
    """A state the schedule can be moved into."""

    @abstractmethod
    def fields(self) -> dict[str, Any]:
        """Column values written when entering this state."""


class Unscheduled(_State):
    status: Literal[None] = None


class Pending(_Transition):
    status: Literal[ScheduledStatus.PENDING] = ScheduledStatus.PENDING
    send_at: datetime
    payload: dict[str, Any]

    def fields(self) -> dict[str, Any]:
        return {
            "scheduled_status": self.status,
            "scheduled_send_at": self.send_at,
            "scheduled_email_data": self.payload,
            "scheduled_sent_at": None,
            "scheduled_error": None,
        }


class Sent(_Transition):
    status: Literal[ScheduledStatus.SENT] = ScheduledStatus.SENT
    sent_at: datetime

    def fields(self) -> dict[str, Any]:
        return {
            "scheduled_status": self.status,
            "scheduled_send_at": None,
            "scheduled_email_data": None,
            "scheduled_sent_at": self.sent_at,
            "scheduled_error": None,
        }


class Cancelled(_Transition):
    status: Literal[ScheduledStatus.CANCELLED] = ScheduledStatus.CANCELLED

    def fields(self) -> dict[str, Any]:
        return {
            "scheduled_status": self.status,
            "scheduled_send_at": None,
            "scheduled_email_data": None,
        }


class Failed(_Transition):
    """Terminal for this cycle; send time and payload keep their last values."""

    status: Literal[ScheduledStatus.FAILED] = ScheduledStatus.FAILED
    error: str
    send_at: datetime | None = None
    payload: dict[str, Any] | None = None

    def fields(self) -> dict[str, Any]:
        return {"scheduled_status": self.status, "scheduled_error": self.error}


ScheduleState = Unscheduled | Pending | Sent | Cancelled | Failed


def schedule_state(invoice: Invoice) -> ScheduleState:
    """Read the schedule columns of ``invoice`` into a state variant.

    Raises:
        pydantic.ValidationError: If the columns hold an illegal combination
    """
    status = invoice.scheduled_status
    if status is None:
        return Unscheduled()
    if status == ScheduledStatus.PENDING:
        return Pending(send_at=invoice.scheduled_send_at, payload=invoice.scheduled_email_data)
    if status == ScheduledStatus.SENT:
        return Sent(sent_at=invoice.scheduled_sent_at)
    if status == ScheduledStatus.CANCELLED:
        return Cancelled()
    return Failed(
        error=invoice.scheduled_error or "",
        send_at=invoice.scheduled_send_at,
        payload=invoice.scheduled_email_data,
    )
