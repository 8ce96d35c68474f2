"""
HTTP endpoint receiving alert notifications from the backend.

Any path accepts POST. The body is parsed with the configured message parser
and handed to the reconciler, stamped with the reception time.
"""
import time
from typing import Callable

from fastapi import APIRouter, FastAPI, Request, Response, status

from alertcompliance.core.exceptions import MessageParseError
from alertcompliance.core.logging import get_logger
from alertcompliance.services.parsers import AlertMessageParser
from alertcompliance.services.reconciler import AlertsReconciler

logger = get_logger(__name__)

router = APIRouter(tags=["receiver"])

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}


def _now_ms() -> int:
    return int(time.time() * 1000)


@router.options("/{path:path}")
async def preflight(path: str) -> Response:
    """Some proxies and sinks send a CORS preflight first."""
    return Response(
        status_code=status.HTTP_200_OK,
        headers={**CORS_HEADERS, "Access-Control-Allow-Method": "POST"},
    )


@router.post("/{path:path}")
async def receive_alerts(path: str, request: Request) -> Response:
    now_ms = request.app.state.clock()
    body = await request.body()

    parser: AlertMessageParser = request.app.state.message_parser
    try:
        alerts = parser(body)
    except MessageParseError as e:
        logger.error("Error in parsing request body", error_code=e.error_code.value, err=e.message)
        return Response(status_code=status.HTTP_400_BAD_REQUEST)

    reconciler: AlertsReconciler = request.app.state.reconciler
    reconciler.process(now_ms, alerts)
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


def create_receiver_app(
    reconciler: AlertsReconciler,
    message_parser: AlertMessageParser,
    clock: Callable[[], int] = _now_ms,
) -> FastAPI:
    """Create the notification receiver application."""
    app = FastAPI(
        title="Alert receiver",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.reconciler = reconciler
    app.state.message_parser = message_parser
    app.state.clock = clock
    app.include_router(router)
    return app
