"""Request-facing invoice operations: scheduling, documents and sending.

The controller is framework-agnostic: it takes raw identifiers and bodies,
raises the errors from ``services.invoices.errors`` (or the adapters' own
errors) and returns ORM records. The FastAPI layer maps both to responses.
"""

import enum
import logging
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from services.email.service import EmailSendResult, EmailService
from services.invoices.delivery import PDF_CONTENT_TYPE, build_invoice_message
from services.invoices.errors import (
    InvalidInputError,
    NotFoundError,
    PreconditionFailedError,
)
from services.invoices.models import Invoice, utcnow
from services.invoices.repository import CompanyRepository, InvoiceRepository
from services.invoices.schedule import Cancelled, Pending, schedule_state
from services.invoices.schema import EmailPayload, InvoiceCreate, InvoiceUpdate
from services.storage.service import DocumentNotFoundError, StorageError, StorageService

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

EMAIL_FIELDS_REQUIRED = "fromEmail, toEmails, subject, and content are required"
SCHEDULE_FIELDS_REQUIRED = "scheduledSendAt, fromEmail, toEmails, subject, and content are required"
NO_DOCUMENTS = "No stored documents for this invoice. Please generate and save documents first."
NON_NULLABLE_FIELDS = (
    "invoice_number",
    "subtotal",
    "tax_rate",
    "tax_amount",
    "total",
    "is_template",
    "has_as_document",
    "sent",
)

_datetime_adapter = TypeAdapter(datetime)
_unsafe_name_chars = re.compile(r"[^A-Za-z0-9_-]+")


class DocumentType(str, enum.Enum):
    INVOICE = "invoice"
    AS = "as"

    @property
    def key_field(self) -> str:
        return "invoice_pdf_key" if self is DocumentType.INVOICE else "as_pdf_key"

    @property
    def key_prefix(self) -> str:
        return "Invoice" if self is DocumentType.INVOICE else "AS"

    @property
    def form_field(self) -> str:
        return "invoicePdf" if self is DocumentType.INVOICE else "asPdf"


class UploadedDocument(BaseModel):
    filename: str | None = None
    content_type: str | None = None
    data: bytes


class StoredDocument(BaseModel):
    filename: str
    content: bytes


def parse_id(value: Any, label: str = "invoice") -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Invalid {label} ID") from None


def validate_body(model: type[ModelT], body: Any, message: str) -> ModelT:
    if not isinstance(body, Mapping):
        raise InvalidInputError(message)
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise InvalidInputError(message) from e


def parse_send_at(value: Any, now: datetime) -> datetime:
    """Parse a requested send time into naive UTC, rejecting past times."""
    try:
        send_at = _datetime_adapter.validate_python(value)
    except ValidationError:
        raise InvalidInputError("Invalid scheduledSendAt date") from None

    if send_at.tzinfo is not None:
        send_at = send_at.astimezone(timezone.utc).replace(tzinfo=None)
    if send_at <= now:
        raise InvalidInputError("scheduledSendAt must be in the future")
    return send_at


def sanitize_name(name: str | None) -> str:
    cleaned = _unsafe_name_chars.sub("_", name or "").strip("_")
    return cleaned or "Unknown"


def document_key(invoice: Invoice, doc_type: DocumentType) -> str:
    """Deterministic object key, e.g. ``invoices/42/Invoice_Acme_Client_N5_2026-02-20.pdf``."""
    from_name = sanitize_name(invoice.from_company.name if invoice.from_company else None)
    to_name = sanitize_name(invoice.to_company.name if invoice.to_company else None)
    date_part = invoice.date.date().isoformat() if invoice.date else "undated"
    return (
        f"invoices/{invoice.id}/"
        f"{doc_type.key_prefix}_{from_name}_{to_name}_N{invoice.invoice_number}_{date_part}.pdf"
    )


class InvoiceController:
    """Invoice operations backed by the record store and both adapters."""

    def __init__(
        self,
        invoices: InvoiceRepository,
        companies: CompanyRepository,
        storage: StorageService,
        email: EmailService,
    ) -> None:
        self.invoices = invoices
        self.companies = companies
        self.storage = storage
        self.email = email

    # Records

    def list_invoices(self) -> list[Invoice]:
        return self.invoices.list_all()

    def get_invoice(self, invoice_id: Any) -> Invoice:
        return self.invoices.get_or_raise(parse_id(invoice_id))

    def create_invoice(self, body: Any) -> Invoice:
        data = validate_body(
            InvoiceCreate,
            body,
            "Invoice number, date, subtotal, taxRate, taxAmount, and total are required",
        )
        for company_id in (data.from_company_id, data.to_company_id):
            if company_id is not None and self.companies.get(company_id) is None:
                raise NotFoundError("Company not found")

        fields = data.model_dump()
        if data.date.tzinfo is not None:
            fields["date"] = data.date.astimezone(timezone.utc).replace(tzinfo=None)
        invoice = self.invoices.create(**fields)
        logger.info(f"Created invoice {invoice.id} (number {invoice.invoice_number})")
        return invoice

    def update_invoice(self, invoice_id: Any, body: Any) -> Invoice:
        """Apply a partial edit to an invoice record.

        Only fields present in the body are written. Schedule and document
        columns are not editable here, so a pending schedule keeps the
        payload captured when it was created.
        """
        invoice_id = parse_id(invoice_id)
        data = validate_body(InvoiceUpdate, body, "Invalid invoice data")
        invoice = self.invoices.get_or_raise(invoice_id)

        fields = data.model_dump(exclude_unset=True)
        for name in NON_NULLABLE_FIELDS:
            if name in fields and fields[name] is None:
                del fields[name]
        for name in ("template_name", "name", "description"):
            if name in fields and not fields[name]:
                fields[name] = None
        for name in ("from_company_id", "to_company_id"):
            company_id = fields.get(name)
            if company_id is not None and self.companies.get(company_id) is None:
                raise NotFoundError("Company not found")
        if fields.get("date") is not None and fields["date"].tzinfo is not None:
            fields["date"] = fields["date"].astimezone(timezone.utc).replace(tzinfo=None)

        invoice = self.invoices.update(invoice.id, **fields)
        logger.info(f"Updated invoice {invoice.id}: {', '.join(sorted(fields)) or 'no changes'}")
        return invoice

    def delete_invoice(self, invoice_id: Any) -> None:
        invoice = self.get_invoice(invoice_id)
        for key in invoice.document_keys:
            self._delete_stored(key)
        self.invoices.delete(invoice.id)
        logger.info(f"Deleted invoice {invoice.id}")

    def mark_invoice_sent(self, invoice_id: Any) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        return self.invoices.update(invoice.id, sent=True)

    def latest_invoice_number(self, to_company_id: Any) -> int | None:
        return self.invoices.latest_invoice_number(parse_id(to_company_id, "company"))

    # Scheduling

    def schedule_send(self, invoice_id: Any, body: Any) -> Invoice:
        """Create or replace the pending schedule of an invoice.

        Checks run in order: id, payload presence, send time, existence,
        template flag, stored documents. Nothing is sent here; the hourly
        sweep delivers the email once the send time has passed.
        """
        invoice_id = parse_id(invoice_id)
        payload = validate_body(EmailPayload, body, SCHEDULE_FIELDS_REQUIRED)
        raw_send_at = body.get("scheduledSendAt", body.get("scheduled_send_at"))
        if raw_send_at is None or raw_send_at == "":
            raise InvalidInputError(SCHEDULE_FIELDS_REQUIRED)
        send_at = parse_send_at(raw_send_at, utcnow())

        invoice = self.invoices.get_or_raise(invoice_id)
        if invoice.is_template:
            raise PreconditionFailedError("Cannot schedule send for a template invoice")
        if not invoice.document_keys:
            raise PreconditionFailedError(NO_DOCUMENTS)

        state = Pending(send_at=send_at, payload=payload.model_dump())
        invoice = self.invoices.update(invoice_id, **state.fields())
        logger.info(f"Scheduled invoice {invoice_id} for {send_at.isoformat()}Z")
        return invoice

    def cancel_schedule(self, invoice_id: Any) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        if not isinstance(schedule_state(invoice), Pending):
            raise PreconditionFailedError("No pending schedule to cancel")

        invoice = self.invoices.update(invoice.id, **Cancelled().fields())
        logger.info(f"Cancelled scheduled send for invoice {invoice.id}")
        return invoice

    # Documents

    def upload_documents(
        self, invoice_id: Any, documents: Mapping[DocumentType, UploadedDocument | None]
    ) -> Invoice:
        """Store the supplied PDFs and record their keys.

        A document type that is not supplied keeps its previously stored key.
        """
        invoice = self.get_invoice(invoice_id)
        if invoice.is_template:
            raise PreconditionFailedError("Cannot upload documents for a template invoice")

        supplied = {doc_type: doc for doc_type, doc in documents.items() if doc is not None}
        if not supplied:
            raise InvalidInputError("At least one document (invoicePdf or asPdf) is required")
        for doc_type, doc in supplied.items():
            if doc.content_type != PDF_CONTENT_TYPE:
                raise InvalidInputError(f"{doc_type.form_field} must be a PDF file")
            if not doc.data:
                raise InvalidInputError(f"{doc_type.form_field} is empty")

        fields: dict[str, Any] = {}
        for doc_type, doc in supplied.items():
            key = document_key(invoice, doc_type)
            self.storage.put(key, doc.data, PDF_CONTENT_TYPE)
            fields[doc_type.key_field] = key

        fields["documents_generated_at"] = utcnow()
        return self.invoices.update(invoice.id, **fields)

    def get_document(self, invoice_id: Any, doc_type: str) -> StoredDocument:
        try:
            doc_type = DocumentType(doc_type)
        except ValueError:
            raise InvalidInputError("Document type must be 'invoice' or 'as'") from None

        invoice = self.get_invoice(invoice_id)
        key = getattr(invoice, doc_type.key_field)
        if not key:
            raise NotFoundError(f"No {doc_type.value} document stored for this invoice")

        return StoredDocument(filename=key.rsplit("/", 1)[-1], content=self.storage.get(key))

    def delete_documents(self, invoice_id: Any) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        for key in invoice.document_keys:
            self._delete_stored(key)
        return self.invoices.update(
            invoice.id, invoice_pdf_key=None, as_pdf_key=None, documents_generated_at=None
        )

    def _delete_stored(self, key: str) -> None:
        try:
            self.storage.delete(key)
        except DocumentNotFoundError:
            pass
        except StorageError as e:
            logger.error(f"Failed to delete stored document {key}: {e}")

    # Sending

    def send_invoice_email(self, invoice_id: Any, body: Any) -> tuple[Invoice, EmailSendResult]:
        """Send the invoice immediately with its stored documents attached.

        A single attempt; adapter errors propagate to the caller.
        """
        invoice_id = parse_id(invoice_id)
        payload = validate_body(EmailPayload, body, EMAIL_FIELDS_REQUIRED)

        invoice = self.invoices.get_or_raise(invoice_id)
        if not invoice.document_keys:
            raise PreconditionFailedError(NO_DOCUMENTS)

        message = build_invoice_message(self.storage, invoice, payload.model_dump())
        result = self.email.send(message)

        invoice = self.invoices.update(invoice_id, sent=True)
        logger.info(f"Sent invoice {invoice_id} by email (id={result.message_id})")
        return invoice, result
