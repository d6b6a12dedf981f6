"""Request-facing error taxonomy.

Each error carries the HTTP status the API renders it with; the message is
returned to the caller verbatim as ``{"error": message}``.
"""


class InvoiceError(Exception):
    status_code = 500


class InvalidInputError(InvoiceError):
    """Unparseable id, missing payload fields, malformed or past send time."""

    status_code = 400


class PreconditionFailedError(InvoiceError):
    """The record is not in a state that allows the operation."""

    status_code = 400


class NotFoundError(InvoiceError):
    status_code = 404


class ConflictError(InvoiceError):
    status_code = 409
