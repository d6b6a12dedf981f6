"""Unit tests for the scheduled invoice sweep."""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from services.email.service import EmailDispatchError
from services.invoices.models import Invoice, ScheduledStatus, utcnow
from services.invoices.schedule import Pending
from services.shared.container import ServiceContainer
from services.storage.service import DocumentNotFoundError

INVOICE_KEY = "invoices/1/Invoice_Acme_Corp_Client_Co_N5_2026-02-20.pdf"


@pytest.fixture
def scheduled(
    services: ServiceContainer,
    make_invoice: Callable[..., Invoice],
    email_payload: dict[str, Any],
    future_time: str,
) -> Callable[..., Invoice]:
    """Factory for invoices with a pending schedule that is already due."""

    def _make(**fields: Any) -> Invoice:
        fields.setdefault("invoice_pdf_key", INVOICE_KEY)
        invoice = make_invoice(**fields)
        services.controller.schedule_send(
            invoice.id, {**email_payload, "scheduledSendAt": future_time}
        )
        # Move the send time into the past
        return services.invoices.update(
            invoice.id, scheduled_send_at=utcnow() - timedelta(minutes=5)
        )

    return _make


class TestSweepDelivery:
    """Test successful deliveries."""

    def test_delivers_due_schedule(
        self,
        services: ServiceContainer,
        mock_email: MagicMock,
        scheduled: Callable[..., Invoice],
    ) -> None:
        """Should send to the stored recipients and mark the schedule sent."""
        invoice = scheduled()

        result = services.sweep.run()

        assert result.selected == 1
        assert result.sent == 1
        assert result.failed == 0

        message = mock_email.send.call_args.args[0]
        assert message.to_emails == ["a@x.com", "b@x.com"]
        assert message.subject == "Invoice for February 2026"
        assert [a.filename for a in message.attachments] == [INVOICE_KEY.rsplit("/", 1)[-1]]

        updated = services.invoices.get(invoice.id)
        assert updated.scheduled_status is ScheduledStatus.SENT
        assert updated.sent is True
        assert updated.scheduled_sent_at is not None
        assert updated.scheduled_error is None
        assert updated.scheduled_send_at is None
        assert updated.scheduled_email_data is None

    def test_substitution_uses_invoice_date(
        self,
        services: ServiceContainer,
        mock_email: MagicMock,
        scheduled: Callable[..., Invoice],
    ) -> None:
        """The invoice date drives the placeholders, not the send time."""
        scheduled(date=datetime(2025, 3, 15))

        services.sweep.run()

        message = mock_email.send.call_args.args[0]
        assert message.subject == "Invoice for March 2025"
        assert message.content.endswith("03/15/2025.")

    def test_snapshot_is_not_affected_by_later_edits(
        self,
        services: ServiceContainer,
        mock_email: MagicMock,
        scheduled: Callable[..., Invoice],
    ) -> None:
        """Editing the invoice after scheduling does not change the recipients."""
        invoice = scheduled()
        services.invoices.update(invoice.id, description="edited")

        services.sweep.run()

        assert mock_email.send.call_args.args[0].to_emails == ["a@x.com", "b@x.com"]

    def test_nothing_due(self, services: ServiceContainer, mock_email: MagicMock) -> None:
        """Should do nothing when no schedule is due."""
        result = services.sweep.run()

        assert result.selected == 0
        mock_email.send.assert_not_called()


class TestSweepSelection:
    """Test which invoices the sweep picks up."""

    def test_future_schedule_not_sent(
        self,
        services: ServiceContainer,
        mock_email: MagicMock,
        make_invoice: Callable[..., Invoice],
        email_payload: dict[str, Any],
        future_time: str,
    ) -> None:
        """Should leave schedules whose time has not come."""
        invoice = make_invoice(invoice_pdf_key=INVOICE_KEY)
        services.controller.schedule_send(
            invoice.id, {**email_payload, "scheduledSendAt": future_time}
        )

        assert services.sweep.run().selected == 0
        mock_email.send.assert_not_called()

    def test_as_only_invoice_is_not_swept(
        self,
        services: ServiceContainer,
        mock_email: MagicMock,
        scheduled: Callable[..., Invoice],
    ) -> None:
        """A due schedule with only the AS document stays pending."""
        invoice = scheduled(invoice_pdf_key=None, as_pdf_key="invoices/1/AS.pdf")

        assert services.sweep.run().selected == 0
        mock_email.send.assert_not_called()
        assert services.invoices.get(invoice.id).scheduled_status is ScheduledStatus.PENDING

    def test_cancelled_schedule_not_sent(
        self,
        services: ServiceContainer,
        mock_email: MagicMock,
        scheduled: Callable[..., Invoice],
    ) -> None:
        """Should skip cancelled schedules."""
        invoice = scheduled()
        services.controller.cancel_schedule(invoice.id)

        assert services.sweep.run().selected == 0
        mock_email.send.assert_not_called()

    def test_second_run_does_not_resend(
        self,
        services: ServiceContainer,
        mock_email: MagicMock,
        scheduled: Callable[..., Invoice],
    ) -> None:
        """A delivered schedule is not selected again."""
        scheduled()

        services.sweep.run()
        services.sweep.run()

        assert mock_email.send.call_count == 1

    def test_manual_send_leaves_schedule_pending(
        self,
        services: ServiceContainer,
        mock_email: MagicMock,
        scheduled: Callable[..., Invoice],
        email_payload: dict[str, Any],
    ) -> None:
        """Sending now does not claim the schedule, so the sweep delivers it again."""
        invoice = scheduled()

        services.controller.send_invoice_email(invoice.id, email_payload)
        assert services.invoices.get(invoice.id).scheduled_status is ScheduledStatus.PENDING

        result = services.sweep.run()

        assert result.sent == 1
        assert mock_email.send.call_count == 2
        updated = services.invoices.get(invoice.id)
        assert updated.sent is True
        assert updated.scheduled_status is ScheduledStatus.SENT


class TestSweepFailures:
    """Test per-invoice failure isolation."""

    def test_dispatch_error_marks_failed(
        self,
        services: ServiceContainer,
        mock_email: MagicMock,
        scheduled: Callable[..., Invoice],
    ) -> None:
        """A provider error is recorded and 'sent' stays unchanged."""
        invoice = scheduled()
        mock_email.send.side_effect = EmailDispatchError("rate limited")

        result = services.sweep.run()

        assert result.failed == 1
        updated = services.invoices.get(invoice.id)
        assert updated.scheduled_status is ScheduledStatus.FAILED
        assert updated.scheduled_error == "rate limited"
        assert updated.sent is False
        # Failed keeps the last send time and payload
        assert updated.scheduled_send_at is not None
        assert updated.scheduled_email_data is not None

    def test_failure_does_not_stop_other_invoices(
        self,
        services: ServiceContainer,
        mock_email: MagicMock,
        scheduled: Callable[..., Invoice],
    ) -> None:
        """One failing invoice does not halt the rest of the sweep."""
        first = scheduled()
        second = scheduled()
        mock_email.send.side_effect = [EmailDispatchError("rate limited"), mock_email.send.return_value]

        result = services.sweep.run()

        assert (result.selected, result.sent, result.failed) == (2, 1, 1)
        assert services.invoices.get(first.id).scheduled_status is ScheduledStatus.FAILED
        assert services.invoices.get(second.id).scheduled_status is ScheduledStatus.SENT

    def test_document_fetch_error_marks_failed(
        self,
        services: ServiceContainer,
        mock_storage: MagicMock,
        mock_email: MagicMock,
        scheduled: Callable[..., Invoice],
    ) -> None:
        """A missing stored document fails the invoice before dispatch."""
        invoice = scheduled()
        mock_storage.get.side_effect = DocumentNotFoundError(INVOICE_KEY)

        services.sweep.run()

        updated = services.invoices.get(invoice.id)
        assert updated.scheduled_status is ScheduledStatus.FAILED
        assert "Document not found in storage" in updated.scheduled_error
        mock_email.send.assert_not_called()

    def test_missing_payload_marks_failed(
        self,
        services: ServiceContainer,
        mock_email: MagicMock,
        make_invoice: Callable[..., Invoice],
    ) -> None:
        """A pending schedule without required fields fails with a description."""
        invoice = make_invoice(invoice_pdf_key=INVOICE_KEY)
        payload = {"from_email": "billing@acme.com", "to_emails": ["a@x.com"]}
        services.invoices.update(
            invoice.id,
            **Pending(send_at=utcnow() - timedelta(minutes=1), payload=payload).fields(),
        )

        services.sweep.run()

        updated = services.invoices.get(invoice.id)
        assert updated.scheduled_status is ScheduledStatus.FAILED
        assert updated.scheduled_error == "Missing scheduled email data or required email fields"
        mock_email.send.assert_not_called()

    @pytest.mark.parametrize("to_emails", [" , ", "", []])
    def test_empty_recipients_marks_failed(
        self,
        services: ServiceContainer,
        mock_email: MagicMock,
        make_invoice: Callable[..., Invoice],
        to_emails: Any,
    ) -> None:
        """Recipients that parse to nothing fail the invoice."""
        invoice = make_invoice(invoice_pdf_key=INVOICE_KEY)
        payload = {
            "from_email": "billing@acme.com",
            "to_emails": to_emails,
            "subject": "Invoice",
            "content": "Attached.",
        }
        services.invoices.update(
            invoice.id,
            **Pending(send_at=utcnow() - timedelta(minutes=1), payload=payload).fields(),
        )

        services.sweep.run()

        updated = services.invoices.get(invoice.id)
        assert updated.scheduled_status is ScheduledStatus.FAILED
        assert updated.scheduled_error == "No recipient emails"
        mock_email.send.assert_not_called()

    def test_failed_status_update_is_logged_and_skipped(
        self,
        services: ServiceContainer,
        mock_email: MagicMock,
        scheduled: Callable[..., Invoice],
    ) -> None:
        """An error while recording the failure does not abort the sweep."""
        scheduled()
        scheduled()
        mock_email.send.side_effect = EmailDispatchError("rate limited")

        with patch.object(services.invoices, "update", side_effect=RuntimeError("db down")):
            result = services.sweep.run()

        assert result.failed == 2
        assert mock_email.send.call_count == 2
