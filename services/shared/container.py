"""Process-wide service wiring.

The API process and the arq worker both call ``build_services`` once at
start-up; everything downstream receives its collaborators explicitly, so
tests can swap in fakes for storage and email.
"""

from dataclasses import dataclass

from sqlalchemy import Engine

from services.email.service import EmailService
from services.invoices.controller import InvoiceController
from services.invoices.db import create_db_engine, create_session_factory, init_db
from services.invoices.repository import (
    CompanyRepository,
    EmailSenderRepository,
    InvoiceRepository,
)
from services.invoices.sweep import ScheduledInvoiceSweep
from services.shared.config import Settings
from services.storage.service import StorageService


@dataclass
class ServiceContainer:
    settings: Settings
    engine: Engine
    invoices: InvoiceRepository
    companies: CompanyRepository
    senders: EmailSenderRepository
    storage: StorageService
    email: EmailService
    controller: InvoiceController
    sweep: ScheduledInvoiceSweep


def build_services(
    settings: Settings,
    storage: StorageService | None = None,
    email: EmailService | None = None,
    create_tables: bool = True,
) -> ServiceContainer:
    """Build the repositories, adapters, controller and sweep.

    Args:
        settings: Application settings
        storage: Document store override (defaults to MinIO-backed storage)
        email: Email service override (defaults to Resend-backed dispatch)
        create_tables: Create missing tables on the configured database
    """
    engine = create_db_engine(settings.database_url)
    if create_tables:
        init_db(engine)
    session_factory = create_session_factory(engine)

    invoices = InvoiceRepository(session_factory)
    companies = CompanyRepository(session_factory)
    senders = EmailSenderRepository(session_factory)
    storage = storage or StorageService(settings)
    email = email or EmailService(settings, senders.is_registered)

    return ServiceContainer(
        settings=settings,
        engine=engine,
        invoices=invoices,
        companies=companies,
        senders=senders,
        storage=storage,
        email=email,
        controller=InvoiceController(invoices, companies, storage, email),
        sweep=ScheduledInvoiceSweep(invoices, storage, email),
    )
