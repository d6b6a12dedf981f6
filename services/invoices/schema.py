"""Request and response models for the invoice API.

Request models accept both snake_case and the camelCase field names used by
the admin frontend (``fromEmail``, ``toEmails``, ``scheduledSendAt`` ...).
"""

import json
from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from services.invoices.models import ScheduledStatus


def parse_email_list(value: Any) -> list[str]:
    """Coerce a recipient field to a list of addresses.

    Accepts a list, a JSON array string, a single JSON string, or a
    comma-separated string.
    """
    if not value:
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return [email.strip() for email in value.split(",") if email.strip()]
        value = parsed if isinstance(parsed, list) else [parsed]
    if not isinstance(value, list):
        return []
    return [str(email).strip() for email in value if email and str(email).strip()]


EmailList = Annotated[list[str], BeforeValidator(parse_email_list)]


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EmailPayload(RequestModel):
    """Email content shared by immediate sends and scheduled sends."""

    from_email: str
    to_emails: EmailList
    cc_emails: EmailList = Field(default_factory=list)
    bcc_emails: EmailList = Field(default_factory=list)
    subject: str
    content: str

    @field_validator("from_email", "subject", "content")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("to_emails")
    @classmethod
    def has_recipients(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one recipient is required")
        return value


class InvoiceCreate(RequestModel):
    invoice_number: int
    date: datetime
    subtotal: float
    tax_rate: float
    tax_amount: float
    total: float
    is_template: bool = False
    template_name: str | None = None
    name: str | None = None
    description: str | None = None
    has_as_document: bool = False
    sent: bool = False
    items: Any | None = None
    from_company_id: int | None = None
    to_company_id: int | None = None


class InvoiceUpdate(RequestModel):
    """Partial invoice edit; only the fields present in the body are written."""

    invoice_number: int | None = None
    date: datetime | None = None
    subtotal: float | None = None
    tax_rate: float | None = None
    tax_amount: float | None = None
    total: float | None = None
    is_template: bool | None = None
    template_name: str | None = None
    name: str | None = None
    description: str | None = None
    has_as_document: bool | None = None
    sent: bool | None = None
    items: Any | None = None
    from_company_id: int | None = None
    to_company_id: int | None = None


class CompanyCreate(RequestModel):
    name: str = Field(min_length=1)


class EmailSenderCreate(RequestModel):
    email: str = Field(pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class CompanyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class EmailSenderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    created_at: datetime


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: int
    date: datetime | None
    subtotal: float
    tax_rate: float
    tax_amount: float
    total: float
    items: Any | None = None
    is_template: bool
    template_name: str | None = None
    name: str | None = None
    description: str | None = None
    sent: bool
    has_as_document: bool
    from_company_id: int | None = None
    to_company_id: int | None = None
    from_company: CompanyOut | None = None
    to_company: CompanyOut | None = None

    invoice_pdf_key: str | None = None
    as_pdf_key: str | None = None
    documents_generated_at: datetime | None = None

    scheduled_send_at: datetime | None = None
    scheduled_status: ScheduledStatus | None = None
    scheduled_email_data: dict[str, Any] | None = None
    scheduled_sent_at: datetime | None = None
    scheduled_error: str | None = None

    created_at: datetime
    updated_at: datetime


class MessageResponse(BaseModel):
    message: str


class InvoiceResponse(MessageResponse):
    invoice: InvoiceOut


class InvoiceListResponse(MessageResponse):
    invoices: list[InvoiceOut]


class LatestInvoiceNumberResponse(MessageResponse):
    latest_invoice_number: int | None


class SendEmailResponse(InvoiceResponse):
    message_id: str | None = None


class CompanyResponse(MessageResponse):
    company: CompanyOut


class CompanyListResponse(MessageResponse):
    companies: list[CompanyOut]


class EmailSenderResponse(MessageResponse):
    email: EmailSenderOut


class EmailSenderListResponse(MessageResponse):
    emails: list[EmailSenderOut]


class SendTestEmailResponse(MessageResponse):
    message_id: str | None = None
