"""Shared fixtures: in-memory SQLite services with mocked storage and email."""

from collections.abc import Callable, Generator
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest

from services.email.service import EmailSendResult, EmailService
from services.invoices.models import Company, Invoice, utcnow
from services.shared.config import Settings
from services.shared.container import ServiceContainer, build_services
from services.storage.service import StorageService


@pytest.fixture
def settings() -> Settings:
    """Create test settings backed by in-memory SQLite."""
    return Settings(
        database_url="sqlite://",
        storage_enabled=True,
        storage_access_key="test-access-key",
        storage_secret_key="test-secret-key",
        storage_bucket="test-invoices",
        resend_api_key="re_test_key",
    )


@pytest.fixture
def mock_storage() -> MagicMock:
    """Create mock document store returning fake PDF bytes per key."""
    mock = MagicMock(spec=StorageService)
    mock.get.side_effect = lambda key: b"%PDF-1.4 " + key.encode()
    mock.health_check.return_value = True
    return mock


@pytest.fixture
def mock_email() -> MagicMock:
    """Create mock email service that always succeeds."""
    mock = MagicMock(spec=EmailService)
    mock.send.return_value = EmailSendResult(message_id="msg_123")
    return mock


@pytest.fixture
def services(
    settings: Settings, mock_storage: MagicMock, mock_email: MagicMock
) -> Generator[ServiceContainer, None, None]:
    """Build services on a fresh in-memory database."""
    container = build_services(settings, storage=mock_storage, email=mock_email)
    yield container
    container.engine.dispose()


@pytest.fixture
def companies(services: ServiceContainer) -> tuple[Company, Company]:
    """Create issuing and receiving companies."""
    return services.companies.create("Acme Corp"), services.companies.create("Client & Co")


@pytest.fixture
def make_invoice(
    services: ServiceContainer, companies: tuple[Company, Company]
) -> Callable[..., Invoice]:
    """Factory for invoices between the two test companies."""
    from_company, to_company = companies

    def _make(**fields: Any) -> Invoice:
        values: dict[str, Any] = {
            "invoice_number": 5,
            "date": datetime(2026, 2, 20),
            "subtotal": 100.0,
            "tax_rate": 0.1,
            "tax_amount": 10.0,
            "total": 110.0,
            "from_company_id": from_company.id,
            "to_company_id": to_company.id,
        }
        values.update(fields)
        return services.invoices.create(**values)

    return _make


@pytest.fixture
def email_payload() -> dict[str, Any]:
    """Request body for immediate and scheduled sends."""
    return {
        "fromEmail": "Billing@Acme.com",
        "toEmails": "a@x.com, b@x.com",
        "subject": "Invoice for ${englishMonth} ${year}",
        "content": "Please find attached the invoice dated ${date}.",
    }


@pytest.fixture
def future_time() -> str:
    """An ISO-8601 send time two days ahead."""
    return (utcnow() + timedelta(days=2)).replace(microsecond=0).isoformat() + "Z"
