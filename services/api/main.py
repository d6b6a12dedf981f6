"""FastAPI application for the invoice administration backend.

Production-ready API with:
- Invoice scheduling, document storage and email endpoints under /api/admin
- Bearer-token gate on admin routes
- Uniform ``{"message", ...}`` / ``{"error"}`` response envelopes
- Health and readiness checks
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import secrets
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import (
    APIRouter,
    Body,
    Depends,
    FastAPI,
    File,
    Form,
    Header,
    HTTPException,
    Request,
    Response,
    UploadFile,
    status,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.api import metrics
from services.email.service import (
    EmailAttachment,
    EmailDispatchError,
    EmailMessage,
)
from services.invoices.controller import (
    EMAIL_FIELDS_REQUIRED,
    DocumentType,
    UploadedDocument,
    parse_id,
    validate_body,
)
from services.invoices.errors import InvoiceError
from services.invoices.schema import (
    CompanyCreate,
    CompanyListResponse,
    CompanyOut,
    CompanyResponse,
    EmailPayload,
    EmailSenderCreate,
    EmailSenderListResponse,
    EmailSenderOut,
    EmailSenderResponse,
    InvoiceListResponse,
    InvoiceOut,
    InvoiceResponse,
    LatestInvoiceNumberResponse,
    MessageResponse,
    SendEmailResponse,
    SendTestEmailResponse,
)
from services.shared.config import Settings, get_settings
from services.shared.container import ServiceContainer, build_services
from services.storage.service import StorageError

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    database: bool
    storage: bool


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def require_admin(
    request: Request, authorization: str | None = Header(default=None)
) -> None:
    """Reject callers without the configured bearer token."""
    token = request.app.state.services.settings.admin_token
    if not token:
        return
    scheme, _, supplied = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(supplied, token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def _read_upload(upload: UploadFile | None) -> UploadedDocument | None:
    if upload is None:
        return None
    return UploadedDocument(
        filename=upload.filename,
        content_type=upload.content_type,
        data=await upload.read(),
    )


router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])


# Invoices


@router.get("/invoices", response_model=InvoiceListResponse, tags=["Invoices"])
def list_invoices(services: ServiceContainer = Depends(get_services)) -> InvoiceListResponse:
    invoices = services.controller.list_invoices()
    return InvoiceListResponse(
        message="Invoices retrieved successfully",
        invoices=[InvoiceOut.model_validate(invoice) for invoice in invoices],
    )


@router.post(
    "/invoices",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Invoices"],
)
def create_invoice(
    body: Any = Body(default=None),
    services: ServiceContainer = Depends(get_services),
) -> InvoiceResponse:
    invoice = services.controller.create_invoice(body)
    return InvoiceResponse(
        message="Invoice created successfully", invoice=InvoiceOut.model_validate(invoice)
    )


@router.get(
    "/invoices/latest-number/{to_company_id}",
    response_model=LatestInvoiceNumberResponse,
    tags=["Invoices"],
)
def latest_invoice_number(
    to_company_id: str, services: ServiceContainer = Depends(get_services)
) -> LatestInvoiceNumberResponse:
    return LatestInvoiceNumberResponse(
        message="Latest invoice number retrieved successfully",
        latest_invoice_number=services.controller.latest_invoice_number(to_company_id),
    )


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse, tags=["Invoices"])
def get_invoice(
    invoice_id: str, services: ServiceContainer = Depends(get_services)
) -> InvoiceResponse:
    invoice = services.controller.get_invoice(invoice_id)
    return InvoiceResponse(
        message="Invoice retrieved successfully", invoice=InvoiceOut.model_validate(invoice)
    )


@router.put("/invoices/{invoice_id}", response_model=InvoiceResponse, tags=["Invoices"])
def update_invoice(
    invoice_id: str,
    body: Any = Body(default=None),
    services: ServiceContainer = Depends(get_services),
) -> InvoiceResponse:
    invoice = services.controller.update_invoice(invoice_id, body)
    return InvoiceResponse(
        message="Invoice updated successfully", invoice=InvoiceOut.model_validate(invoice)
    )


@router.delete("/invoices/{invoice_id}", response_model=MessageResponse, tags=["Invoices"])
def delete_invoice(
    invoice_id: str, services: ServiceContainer = Depends(get_services)
) -> MessageResponse:
    services.controller.delete_invoice(invoice_id)
    return MessageResponse(message="Invoice deleted successfully")


@router.patch("/invoices/{invoice_id}/sent", response_model=InvoiceResponse, tags=["Invoices"])
def mark_invoice_sent(
    invoice_id: str, services: ServiceContainer = Depends(get_services)
) -> InvoiceResponse:
    invoice = services.controller.mark_invoice_sent(invoice_id)
    return InvoiceResponse(
        message="Invoice marked as sent successfully", invoice=InvoiceOut.model_validate(invoice)
    )


# Documents


@router.post(
    "/invoices/{invoice_id}/documents", response_model=InvoiceResponse, tags=["Documents"]
)
async def upload_documents(
    invoice_id: str,
    invoice_pdf: UploadFile | None = File(default=None, alias="invoicePdf"),  # noqa: B008
    as_pdf: UploadFile | None = File(default=None, alias="asPdf"),  # noqa: B008
    services: ServiceContainer = Depends(get_services),
) -> InvoiceResponse:
    """Upload the invoice PDF and/or the AS PDF (multipart fields ``invoicePdf``, ``asPdf``).

    A document that is not supplied keeps its previously stored version.

    ## Error Handling

    - Returns 400 for template invoices, no files, or non-PDF files
    - Returns 404 if the invoice does not exist
    - Returns 503 if document storage is not configured
    """
    documents = {
        DocumentType.INVOICE: await _read_upload(invoice_pdf),
        DocumentType.AS: await _read_upload(as_pdf),
    }
    invoice = services.controller.upload_documents(invoice_id, documents)

    for doc_type, doc in documents.items():
        if doc is not None:
            metrics.invoice_documents_uploaded_total.labels(type=doc_type.value).inc()

    return InvoiceResponse(
        message="Documents uploaded successfully", invoice=InvoiceOut.model_validate(invoice)
    )


@router.get("/invoices/{invoice_id}/documents/{doc_type}", tags=["Documents"])
def get_document(
    invoice_id: str, doc_type: str, services: ServiceContainer = Depends(get_services)
) -> Response:
    document = services.controller.get_document(invoice_id, doc_type)
    return Response(
        content=document.content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{document.filename}"'},
    )


@router.delete(
    "/invoices/{invoice_id}/documents", response_model=InvoiceResponse, tags=["Documents"]
)
def delete_documents(
    invoice_id: str, services: ServiceContainer = Depends(get_services)
) -> InvoiceResponse:
    invoice = services.controller.delete_documents(invoice_id)
    return InvoiceResponse(
        message="Documents deleted successfully", invoice=InvoiceOut.model_validate(invoice)
    )


# Sending and scheduling


@router.post(
    "/invoices/{invoice_id}/send-email", response_model=SendEmailResponse, tags=["Sending"]
)
def send_invoice_email(
    invoice_id: str,
    body: Any = Body(default=None),
    services: ServiceContainer = Depends(get_services),
) -> SendEmailResponse:
    try:
        invoice, result = services.controller.send_invoice_email(invoice_id, body)
    except (EmailDispatchError, StorageError):
        metrics.invoice_emails_sent_total.labels(source="manual", status="failed").inc()
        raise
    metrics.invoice_emails_sent_total.labels(source="manual", status="success").inc()

    return SendEmailResponse(
        message="Invoice email sent successfully",
        invoice=InvoiceOut.model_validate(invoice),
        message_id=result.message_id,
    )


@router.post(
    "/invoices/{invoice_id}/schedule-send", response_model=InvoiceResponse, tags=["Sending"]
)
def schedule_send(
    invoice_id: str,
    body: Any = Body(default=None),
    services: ServiceContainer = Depends(get_services),
) -> InvoiceResponse:
    """Schedule the invoice email for a future time (UTC).

    The hourly worker sweep delivers it once ``scheduledSendAt`` has passed.
    """
    invoice = services.controller.schedule_send(invoice_id, body)
    return InvoiceResponse(
        message="Invoice email scheduled successfully", invoice=InvoiceOut.model_validate(invoice)
    )


@router.patch(
    "/invoices/{invoice_id}/cancel-schedule", response_model=InvoiceResponse, tags=["Sending"]
)
def cancel_schedule(
    invoice_id: str, services: ServiceContainer = Depends(get_services)
) -> InvoiceResponse:
    invoice = services.controller.cancel_schedule(invoice_id)
    return InvoiceResponse(
        message="Scheduled send cancelled successfully", invoice=InvoiceOut.model_validate(invoice)
    )


# Companies


@router.get("/companies", response_model=CompanyListResponse, tags=["Companies"])
def list_companies(services: ServiceContainer = Depends(get_services)) -> CompanyListResponse:
    return CompanyListResponse(
        message="Companies retrieved successfully",
        companies=[CompanyOut.model_validate(c) for c in services.companies.list_all()],
    )


@router.post(
    "/companies",
    response_model=CompanyResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Companies"],
)
def create_company(
    body: Any = Body(default=None), services: ServiceContainer = Depends(get_services)
) -> CompanyResponse:
    data = validate_body(CompanyCreate, body, "Company name is required")
    company = services.companies.create(data.name.strip())
    return CompanyResponse(
        message="Company created successfully", company=CompanyOut.model_validate(company)
    )


# Email senders


@router.get("/emails", response_model=EmailSenderListResponse, tags=["Email"])
def list_email_senders(
    services: ServiceContainer = Depends(get_services),
) -> EmailSenderListResponse:
    return EmailSenderListResponse(
        message="Email senders retrieved successfully",
        emails=[EmailSenderOut.model_validate(s) for s in services.senders.list_all()],
    )


@router.post(
    "/emails",
    response_model=EmailSenderResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Email"],
)
def create_email_sender(
    body: Any = Body(default=None), services: ServiceContainer = Depends(get_services)
) -> EmailSenderResponse:
    data = validate_body(EmailSenderCreate, body, "A valid email is required")
    sender = services.senders.create(data.email)
    return EmailSenderResponse(
        message="Email sender created successfully", email=EmailSenderOut.model_validate(sender)
    )


@router.delete("/emails/{sender_id}", response_model=MessageResponse, tags=["Email"])
def delete_email_sender(
    sender_id: str, services: ServiceContainer = Depends(get_services)
) -> MessageResponse:
    services.senders.delete(parse_id(sender_id, "email"))
    return MessageResponse(message="Email sender deleted successfully")


@router.post("/emails/test", response_model=SendTestEmailResponse, tags=["Email"])
async def send_test_email(
    from_email: str | None = Form(default=None, alias="fromEmail"),
    to_emails: str | None = Form(default=None, alias="toEmails"),
    cc_emails: str | None = Form(default=None, alias="ccEmails"),
    bcc_emails: str | None = Form(default=None, alias="bccEmails"),
    subject: str | None = Form(default=None),
    content: str | None = Form(default=None),
    attachments: list[UploadFile] | None = File(default=None),  # noqa: B008
    services: ServiceContainer = Depends(get_services),
) -> SendTestEmailResponse:
    """Send an ad-hoc email from a registered sender, with optional attachments."""
    fields = {
        "from_email": from_email,
        "to_emails": to_emails,
        "cc_emails": cc_emails,
        "bcc_emails": bcc_emails,
        "subject": subject,
        "content": content,
    }
    payload = validate_body(
        EmailPayload, {k: v for k, v in fields.items() if v is not None}, EMAIL_FIELDS_REQUIRED
    )

    message = EmailMessage(
        **payload.model_dump(),
        attachments=[
            EmailAttachment(
                filename=upload.filename or "attachment",
                content=await upload.read(),
                content_type=upload.content_type or "application/octet-stream",
            )
            for upload in attachments or []
        ],
    )
    result = services.email.send(message)
    return SendTestEmailResponse(message="Test email sent successfully", message_id=result.message_id)


# Application


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(
    services: ServiceContainer | None = None, settings: Settings | None = None
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        services: Pre-built services (tests); built on start-up when omitted
        settings: Settings used when ``services`` is omitted
    """
    settings = services.settings if services is not None else settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)
        yield

    app = FastAPI(
        title="Invoice Administration Backend",
        description="Invoice documents, email delivery and scheduled sending",
        version=settings.service_version,
        lifespan=lifespan,
    )
    app.state.services = services

    origins = settings.cors_origin_list
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=bool(origins),
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Middleware to collect request metrics.

        Tracks:
        - Request count by method, endpoint, and status
        - Request duration by method and endpoint
        """
        # Skip metrics for /metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Label by route template so invoice ids do not explode cardinality
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        metrics.http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
        ).inc()

        metrics.http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response

    @app.exception_handler(InvoiceError)
    async def invoice_error_handler(request: Request, exc: InvoiceError) -> JSONResponse:
        return _error_response(exc.status_code, str(exc))

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error(f"Storage error on {request.method} {request.url.path}: {exc}")
        return _error_response(exc.status_code, str(exc))

    @app.exception_handler(EmailDispatchError)
    async def email_error_handler(request: Request, exc: EmailDispatchError) -> JSONResponse:
        logger.error(f"Email error on {request.method} {request.url.path}: {exc}")
        return _error_response(exc.status_code, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _error_response(status.HTTP_400_BAD_REQUEST, "Invalid request")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health_check() -> HealthResponse:
        """Liveness check: the process is up and serving requests."""
        return HealthResponse(
            status="healthy", version=settings.service_version, service=settings.service_name
        )

    @app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
    def readiness_check(
        services: ServiceContainer = Depends(get_services),
    ) -> ReadinessResponse:
        """Readiness check: database reachable; storage reported but not required."""
        try:
            with services.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            database = True
        except Exception as e:
            logger.warning(f"Readiness check: database connection failed: {e}")
            database = False

        return ReadinessResponse(
            ready=database, database=database, storage=services.storage.health_check()
        )

    @app.get("/metrics", tags=["Monitoring"])
    def get_metrics() -> Response:
        """Prometheus metrics endpoint."""
        metrics_data, content_type = metrics.get_metrics()
        return Response(content=metrics_data, media_type=content_type)

    app.include_router(router)
    return app


app = create_app()
