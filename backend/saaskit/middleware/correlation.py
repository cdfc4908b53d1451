"""X-Request-ID propagation.

A client-supplied id is echoed back when it looks sane, otherwise a fresh
hex id is issued. The same id is the `debug_id` in error responses and the
`correlation_id` in log entries.
"""

import re
import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI

REQUEST_ID_HEADER = "X-Request-ID"

# Caller ids end up in logs and response bodies; keep them short and printable
_ACCEPTED_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def is_acceptable_request_id(value: str) -> bool:
    return bool(_ACCEPTED_ID.match(value))


def setup_correlation_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name=REQUEST_ID_HEADER,
        generator=lambda: uuid.uuid4().hex,
        validator=is_acceptable_request_id,
    )


def get_correlation_id() -> str | None:
    """Return the current request's correlation ID, or None outside a request."""
    return correlation_id.get(None)
