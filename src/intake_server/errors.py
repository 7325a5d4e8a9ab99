"""Global exception handlers — map SDK exceptions to HTTP status codes.

The engines raise ``ValueError`` for invalid transitions, unknown ids and
expired sessions.  Rather than catching these in every route, we install
global handlers that inspect the message and pick the right status code.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from intake_engine.errors import MutationError

logger = logging.getLogger(__name__)

# --- Keyword patterns in ValueError messages and their HTTP status codes ---
# Checked in order; first match wins.
_VALUE_ERROR_PATTERNS: list[tuple[str, int]] = [
    # Session past its TTL
    ("expired", 410),
    # Unknown session, section, question or summary
    ("not found", 404),
    # Sync endpoints without a configured remote
    ("not configured", 503),
    # Bad input wins over the state conflicts below
    ("empty", 400),
    # Intent not valid in the current phase / page / state
    ("cannot", 409),
    ("already", 409),
]


# --- Client-safe messages keyed by HTTP status code ---
# Session ids and field values stay in the server log.
_SAFE_MESSAGES: dict[int, str] = {
    404: "Resource not found",
    409: "Action not allowed in the current state",
    410: "Session has expired",
    503: "Service not configured",
    400: "Invalid request",
}


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Map SDK ``ValueError`` to a contextual HTTP error response.

    The raw exception message is logged server-side but never sent to the
    client.
    """
    msg = str(exc)
    status = 400
    for pattern, code in _VALUE_ERROR_PATTERNS:
        if pattern in msg.lower():
            status = code
            break

    logger.warning("ValueError [%d] at %s: %s", status, request.url.path, msg)
    return JSONResponse(
        status_code=status,
        content={"detail": _SAFE_MESSAGES.get(status, "Invalid request")},
    )


async def mutation_error_handler(request: Request, exc: MutationError) -> JSONResponse:
    """Remote system unreachable outside of a sync run."""
    logger.warning("MutationError at %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "Remote service unavailable"})


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions — log full traceback, return 500."""
    logger.exception("Unhandled exception at %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
