import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request, Response, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from relay.codes import generate_recipient_code
from relay.config import Settings, get_settings
from relay.errors import PersistenceError, ValidationError
from relay.hub import JOIN_ROOM, RealtimeHub
from relay.logging_utils import RequestLoggingMiddleware, log_submission_data, setup_logging
from relay.metrics import get_metrics, get_metrics_content_type, record_submission_outcome
from relay.schemas import (
    ComplimentCreate,
    ComplimentCreatedResponse,
    ComplimentsListResponse,
    ErrorResponse,
    HealthResponse,
    RecipientCodeResponse,
)
from relay.storage import ComplimentGateway

logger = logging.getLogger(__name__)

router = APIRouter()

REQUIRED_FIELDS_MESSAGE = "recipientCode and message are required"


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


# =============================================================================
# Dependencies
# =============================================================================

def get_gateway(request: Request) -> ComplimentGateway:
    return request.app.state.gateway


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub


# =============================================================================
# Health Check Routes
# =============================================================================

@router.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
async def health() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok", message="Backend is running")


@router.get("/health/ready", response_model=HealthResponse, response_model_exclude_none=True)
async def health_ready(response: Response, gateway: ComplimentGateway = Depends(get_gateway)) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the datastore is reachable and the
    compliments table exists, otherwise 503.
    """
    if not await run_in_threadpool(gateway.check_health):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Database not reachable or schema not applied")
    return HealthResponse(status="ready")


# =============================================================================
# Recipient Code Route
# =============================================================================

@router.post(
    "/api/recipient",
    response_model=RecipientCodeResponse,
    responses={500: {"model": ErrorResponse}},
)
async def create_recipient(request: Request):
    """Generate a new recipient code. Nothing is stored."""
    try:
        code = generate_recipient_code(request.app.state.settings.RECIPIENT_CODE_LENGTH)
        return RecipientCodeResponse(recipientCode=code)
    except Exception:
        logger.exception("Error generating recipient code")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to generate recipient code")


# =============================================================================
# Compliment Routes
# =============================================================================

@router.post(
    "/api/compliments",
    status_code=status.HTTP_201_CREATED,
    response_model=ComplimentCreatedResponse,
    responses={
        400: {"model": ErrorResponse, "description": "recipientCode or message missing"},
        500: {"model": ErrorResponse, "description": "Datastore failure"},
    },
)
async def create_compliment(
    request: Request,
    gateway: ComplimentGateway = Depends(get_gateway),
    hub: RealtimeHub = Depends(get_hub),
):
    """
    Store an anonymous compliment and push it to the recipient's room.

    The row is persisted before the push, so subscribers never see a message
    that is not stored. Nothing is published when persistence fails.
    """
    recipient_code = None
    try:
        # Parse manually so malformed bodies are reported as 400 like missing fields
        try:
            body = ComplimentCreate.model_validate(await request.json())
        except ValueError as e:
            logger.warning(f"Invalid compliment body: {e}")
            record_submission_outcome("validation_error")
            log_submission_data(request, result="validation_error")
            return error_response(status.HTTP_400_BAD_REQUEST, REQUIRED_FIELDS_MESSAGE)

        recipient_code = body.recipientCode
        if not body.recipientCode or not body.message:
            record_submission_outcome("validation_error")
            log_submission_data(request, recipient_code=recipient_code, result="validation_error")
            return error_response(status.HTTP_400_BAD_REQUEST, REQUIRED_FIELDS_MESSAGE)

        try:
            compliment = await gateway.insert(body.recipientCode, body.message)
        except ValidationError as e:
            record_submission_outcome("validation_error")
            log_submission_data(request, recipient_code=recipient_code, result="validation_error")
            return error_response(status.HTTP_400_BAD_REQUEST, str(e))
        except PersistenceError as e:
            logger.error(f"Failed to save compliment for {recipient_code}: {e}")
            record_submission_outcome("persistence_error")
            log_submission_data(request, recipient_code=recipient_code, result="persistence_error")
            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to save compliment")

        await hub.publish(body.recipientCode, compliment.model_dump(mode="json"))

        record_submission_outcome("created")
        log_submission_data(request, recipient_code=recipient_code, result="created")
        return ComplimentCreatedResponse(success=True, compliment=compliment)
    except Exception:
        logger.exception("Error in /api/compliments")
        record_submission_outcome("error")
        log_submission_data(request, recipient_code=recipient_code, result="error")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


@router.get(
    "/api/compliments/{recipientCode}",
    response_model=ComplimentsListResponse,
    responses={500: {"model": ErrorResponse}},
)
async def list_compliments(recipientCode: str, gateway: ComplimentGateway = Depends(get_gateway)):
    """All compliments for a recipient code, newest first. Empty when none."""
    try:
        compliments = await gateway.list_by_recipient(recipientCode)
        logger.info(f"Returned {len(compliments)} compliments for {recipientCode}")
        return ComplimentsListResponse(compliments=compliments)
    except PersistenceError as e:
        logger.error(f"Failed to fetch compliments for {recipientCode}: {e}")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch compliments")
    except Exception:
        logger.exception("Error fetching compliments")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# =============================================================================
# Metrics Route
# =============================================================================

@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


# =============================================================================
# Realtime Route
# =============================================================================

def origin_allowed(origin: Optional[str], allowed: str) -> bool:
    return origin is None or allowed == "*" or origin == allowed


@router.websocket("/ws")
async def realtime(websocket: WebSocket) -> None:
    """
    Realtime channel. Clients send {"event": "join_room", "data": "<code>"}
    and receive {"event": "new_compliment", "data": <compliment>} pushes.
    """
    settings: Settings = websocket.app.state.settings
    hub: RealtimeHub = websocket.app.state.hub

    origin = websocket.headers.get("origin")
    if not origin_allowed(origin, settings.CORS_ORIGIN):
        logger.warning(f"Realtime connection refused for origin {origin}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection_id = hub.connect(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("text") is None:
                logger.warning(f"Ignoring binary frame from {connection_id}")
                continue
            handle_frame(hub, connection_id, message["text"])
    finally:
        hub.disconnect(connection_id)


def handle_frame(hub: RealtimeHub, connection_id: str, raw: str) -> None:
    """Apply one client frame. Malformed frames and unknown events are ignored."""
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Ignoring non-JSON frame from {connection_id}")
        return

    if not isinstance(frame, dict) or frame.get("event") != JOIN_ROOM:
        logger.debug(f"Ignoring frame from {connection_id}: {raw[:100]}")
        return

    code = frame.get("data")
    if not isinstance(code, str) or not code:
        logger.warning(f"Ignoring join_room without a recipient code from {connection_id}")
        return

    hub.join(connection_id, code)


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[ComplimentGateway] = None,
    hub: Optional[RealtimeHub] = None,
) -> FastAPI:
    """
    Build the application. A gateway or hub passed in is used as-is (tests pass
    fakes); otherwise they are built from settings and owned by the app.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    owns_gateway = gateway is None
    if owns_gateway:
        gateway = ComplimentGateway(
            settings.DATABASE_URL,
            service_key=settings.DATABASE_SERVICE_KEY,
            timeout=settings.DATASTORE_TIMEOUT_SECONDS,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_gateway:
            gateway.init_schema()
        logger.info(f"Server ready on port {settings.PORT}, allowed origin {settings.CORS_ORIGIN}")
        yield
        if owns_gateway:
            gateway.dispose()

    app = FastAPI(
        title="Compliment Relay",
        description="Anonymous compliments with realtime delivery",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.hub = hub or RealtimeHub()

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.CORS_ORIGIN],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "relay.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
    )
