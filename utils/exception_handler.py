"""
Global exception handler for the Jan Seva API.

Wraps DRF's default handler so that platform exceptions raised by the
service layer are rendered as consistent JSON error payloads.
"""

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from .exceptions import JanSevaError

logger = logging.getLogger(__name__)


def custom_exception_handler(exc, context):
    """
    Render ``JanSevaError`` subclasses with their own status code and
    fall back to DRF's handler for everything else.
    """
    view = context.get("view")

    if isinstance(exc, JanSevaError):
        if exc.status_code >= 500:
            logger.exception("API exception", exc_info=exc, extra={"view": view})
        else:
            logger.warning(f"{exc.__class__.__name__} in {view.__class__.__name__}: {exc}")
        return Response(exc.to_dict(), status=exc.status_code)

    response = drf_exception_handler(exc, context)

    # Add the HTTP status code to the payload
    if response is not None and isinstance(response.data, dict):
        response.data["status_code"] = response.status_code

    if response is None:
        logger.exception("Unhandled API exception", exc_info=exc, extra={"view": view})

    return response
