"""Persistence operations over the invoice, company and email-sender tables.

Every method opens its own short-lived session; status transitions are plain
last-writer-wins updates keyed by primary key.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from services.invoices.errors import ConflictError, NotFoundError
from services.invoices.models import Company, EmailSender, Invoice, ScheduledStatus, utcnow


class InvoiceRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get(self, invoice_id: int) -> Invoice | None:
        with self._session_factory() as session:
            return session.get(Invoice, invoice_id)

    def get_or_raise(self, invoice_id: int) -> Invoice:
        invoice = self.get(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice not found")
        return invoice

    def list_all(self) -> list[Invoice]:
        with self._session_factory() as session:
            stmt = select(Invoice).order_by(Invoice.created_at.desc(), Invoice.id.desc())
            return list(session.scalars(stmt).unique())

    def create(self, **fields: Any) -> Invoice:
        with self._session_factory() as session:
            invoice = Invoice(**fields)
            session.add(invoice)
            session.commit()
            return self._reload(session, invoice.id)

    def update(self, invoice_id: int, **fields: Any) -> Invoice:
        """Apply column updates and return the refreshed record.

        Raises:
            NotFoundError: If the invoice does not exist
        """
        with self._session_factory() as session:
            invoice = session.get(Invoice, invoice_id)
            if invoice is None:
                raise NotFoundError("Invoice not found")
            for name, value in fields.items():
                setattr(invoice, name, value)
            invoice.updated_at = utcnow()
            session.commit()
            return self._reload(session, invoice_id)

    def delete(self, invoice_id: int) -> None:
        with self._session_factory() as session:
            invoice = session.get(Invoice, invoice_id)
            if invoice is None:
                raise NotFoundError("Invoice not found")
            session.delete(invoice)
            session.commit()

    def find_due_scheduled(self, now: datetime) -> list[Invoice]:
        """Pending schedules due at ``now`` that have an invoice PDF stored.

        Invoices that only carry the AS document are not selected.
        """
        with self._session_factory() as session:
            stmt = (
                select(Invoice)
                .where(Invoice.scheduled_status == ScheduledStatus.PENDING)
                .where(Invoice.scheduled_send_at <= now)
                .where(Invoice.invoice_pdf_key.isnot(None))
                .order_by(Invoice.id.asc())
            )
            return list(session.scalars(stmt).unique())

    def latest_invoice_number(self, to_company_id: int) -> int | None:
        with self._session_factory() as session:
            stmt = (
                select(Invoice.invoice_number)
                .where(Invoice.to_company_id == to_company_id)
                .where(Invoice.is_template.is_(False))
                .order_by(Invoice.invoice_number.desc())
                .limit(1)
            )
            return session.scalar(stmt)

    @staticmethod
    def _reload(session, invoice_id: int) -> Invoice:
        # populate_existing re-runs the joined company loads after a write
        return session.get(Invoice, invoice_id, populate_existing=True)


class CompanyRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def list_all(self) -> list[Company]:
        with self._session_factory() as session:
            return list(session.scalars(select(Company).order_by(Company.name.asc())))

    def get(self, company_id: int) -> Company | None:
        with self._session_factory() as session:
            return session.get(Company, company_id)

    def create(self, name: str) -> Company:
        with self._session_factory() as session:
            company = Company(name=name)
            session.add(company)
            session.commit()
            return company


class EmailSenderRepository:
    """Directory of sender addresses allowed to dispatch email."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def list_all(self) -> list[EmailSender]:
        with self._session_factory() as session:
            stmt = select(EmailSender).order_by(EmailSender.created_at.desc(), EmailSender.id.desc())
            return list(session.scalars(stmt))

    def is_registered(self, email: str) -> bool:
        with self._session_factory() as session:
            stmt = select(EmailSender.id).where(EmailSender.email == email.strip().lower())
            return session.scalar(stmt) is not None

    def create(self, email: str) -> EmailSender:
        """Register a sender address.

        Raises:
            ConflictError: If the address is already registered
        """
        with self._session_factory() as session:
            sender = EmailSender(email=email.strip().lower())
            session.add(sender)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ConflictError("Email already exists") from e
            return sender

    def delete(self, sender_id: int) -> None:
        with self._session_factory() as session:
            sender = session.get(EmailSender, sender_id)
            if sender is None:
                raise NotFoundError("Email sender not found")
            session.delete(sender)
            session.commit()
