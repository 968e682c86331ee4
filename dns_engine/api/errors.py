# dns_engine/api/errors.py
"""Map domain errors onto HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dns_engine.core.errors import (
    CertificateNotFound,
    DeactivatedAccountError,
    DnsEngineError,
    DuplicateRecordError,
    PersistenceError,
    QuotaExceededError,
    RecordNotFound,
    RecordValidationError,
    TransientProviderFault,
    UserNotFound,
)

logger = logging.getLogger(__name__)


# Most specific first
STATUS_CODES = [
    (DuplicateRecordError, 409),
    (QuotaExceededError, 409),
    (RecordValidationError, 400),
    (DeactivatedAccountError, 403),
    (RecordNotFound, 404),
    (CertificateNotFound, 404),
    (UserNotFound, 404),
    (PersistenceError, 409),
    (TransientProviderFault, 503),
]


def status_for(error: DnsEngineError) -> int:
    for error_type, status_code in STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


async def dns_engine_error_handler(request: Request, exc: DnsEngineError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"[api] {request.method} {request.url.path} failed: {exc}", exc_info=exc)

    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DnsEngineError, dns_engine_error_handler)
