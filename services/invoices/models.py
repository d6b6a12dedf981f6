"""ORM models for invoices, counterpart companies and registered email senders."""

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from services.invoices.db import Base


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention for all columns)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ScheduledStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    CANCELLED = "cancelled"
    FAILED = "failed"


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class EmailSender(Base):
    __tablename__ = "email_senders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_number: Mapped[int] = mapped_column(Integer, index=True)
    date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    subtotal: Mapped[float] = mapped_column(Float, default=0.0)
    tax_rate: Mapped[float] = mapped_column(Float, default=0.0)
    tax_amount: Mapped[float] = mapped_column(Float, default=0.0)
    total: Mapped[float] = mapped_column(Float, default=0.0)
    items: Mapped[Any | None] = mapped_column(JSON, nullable=True)

    is_template: Mapped[bool] = mapped_column(Boolean, default=False)
    template_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent: Mapped[bool] = mapped_column(Boolean, default=False)
    has_as_document: Mapped[bool] = mapped_column(Boolean, default=False)

    from_company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id"), nullable=True)
    to_company_id: Mapped[int | None] = mapped_column(
        ForeignKey("companies.id"), nullable=True, index=True
    )
    from_company: Mapped[Company | None] = relationship(foreign_keys=[from_company_id], lazy="joined")
    to_company: Mapped[Company | None] = relationship(foreign_keys=[to_company_id], lazy="joined")

    # Stored documents (object storage keys)
    invoice_pdf_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    as_pdf_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    documents_generated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Scheduled delivery
    scheduled_send_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    scheduled_status: Mapped[ScheduledStatus | None] = mapped_column(
        Enum(
            ScheduledStatus,
            native_enum=False,
            length=16,
            values_callable=lambda statuses: [status.value for status in statuses],
        ),
        nullable=True,
        index=True,
    )
    scheduled_email_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    scheduled_sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    scheduled_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    @property
    def document_keys(self) -> list[str]:
        return [key for key in (self.invoice_pdf_key, self.as_pdf_key) if key]
