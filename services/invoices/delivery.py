"""Message assembly shared by immediate sends and the scheduled sweep.

Both paths go through ``build_invoice_message`` so a scheduled email renders
exactly as the same email sent by hand would.
"""

from collections.abc import Mapping
from typing import Any

from services.email.service import EmailAttachment, EmailMessage
from services.invoices.models import Invoice
from services.invoices.schema import parse_email_list
from services.invoices.templating import replace_date_variables
from services.storage.service import StorageService

PDF_CONTENT_TYPE = "application/pdf"


def invoice_date_string(invoice: Invoice) -> str:
    """The invoice date as ``YYYY-MM-DD`` (empty when the invoice is undated)."""
    return invoice.date.date().isoformat() if invoice.date else ""


def collect_attachments(storage: StorageService, invoice: Invoice) -> list[EmailAttachment]:
    """Fetch every stored document of ``invoice``; storage errors propagate."""
    attachments = []
    for key, fallback in ((invoice.invoice_pdf_key, "invoice.pdf"), (invoice.as_pdf_key, "as.pdf")):
        if not key:
            continue
        attachments.append(
            EmailAttachment(
                filename=key.rsplit("/", 1)[-1] or fallback,
                content=storage.get(key),
                content_type=PDF_CONTENT_TYPE,
            )
        )
    return attachments


def _lowercase(addresses: Any) -> list[str]:
    return [email.lower() for email in parse_email_list(addresses)]


def build_invoice_message(
    storage: StorageService, invoice: Invoice, payload: Mapping[str, Any]
) -> EmailMessage:
    """Render ``payload`` for ``invoice`` with its documents attached.

    Args:
        storage: Document store holding the invoice PDFs
        invoice: Invoice whose date drives the placeholders
        payload: Snapshot with ``from_email``, ``to_emails``, ``cc_emails``,
            ``bcc_emails``, ``subject`` and ``content``
    """
    date_str = invoice_date_string(invoice)
    return EmailMessage(
        from_email=payload["from_email"].strip().lower(),
        to_emails=_lowercase(payload.get("to_emails")),
        cc_emails=_lowercase(payload.get("cc_emails")),
        bcc_emails=_lowercase(payload.get("bcc_emails")),
        subject=replace_date_variables(payload["subject"], date_str),
        content=replace_date_variables(payload["content"], date_str),
        is_html=False,
        attachments=collect_attachments(storage, invoice),
    )
