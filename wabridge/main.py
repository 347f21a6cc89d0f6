import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, WebSocket, status
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from wabridge.auth import BearerAuthMiddleware, authorize_websocket
from wabridge.bridge import Bridge, load_provider
from wabridge.config import Settings, get_settings
from wabridge.errors import ClientNotReadyError, SendFailedError
from wabridge.events import MessagingProvider
from wabridge.logging_utils import RequestLoggingMiddleware, log_send_data, setup_logging
from wabridge.metrics import get_metrics, get_metrics_content_type
from wabridge.schemas import (
    ChatRecord,
    ContactRecord,
    ErrorResponse,
    EventEnvelope,
    MessageRecord,
    SendMessageRequest,
    SendMessageResponse,
    StatusResponse,
)
from wabridge.storage import DEFAULT_PAGE_LIMIT, DEFAULT_PAGE_OFFSET
from wabridge.utils import parse_int

logger = logging.getLogger(__name__)

router = APIRouter()


def get_bridge(request: Request) -> Bridge:
    return request.app.state.bridge


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: open the store (fatal on failure), start event handling,
      initialize the provider
    - Shutdown: cancel reconnects, destroy the provider, close the store
    """
    bridge: Bridge = app.state.bridge
    await bridge.start()
    logger.info("WhatsApp bridge is up and running")
    yield
    await bridge.stop()


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[MessagingProvider] = None,
) -> FastAPI:
    """
    Build the gateway application around a freshly composed Bridge.

    The provider defaults to the one named by PROVIDER_FACTORY.
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    if provider is None:
        if not settings.PROVIDER_FACTORY:
            raise RuntimeError("PROVIDER_FACTORY is not configured")
        provider = load_provider(settings.PROVIDER_FACTORY, settings.SESSION_DATA_PATH)

    app = FastAPI(
        title="WhatsApp Bridge API",
        description="Bridges a WhatsApp session to local consumers",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.bridge = Bridge(settings, provider)

    # Added last runs first: log every request, including rejected ones
    app.add_middleware(BearerAuthMiddleware, secret=settings.INTERNAL_API_SECRET)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(router)
    return app


# =============================================================================
# Status Route
# =============================================================================

@router.get("/status", response_model=StatusResponse)
async def get_status(bridge: Bridge = Depends(get_bridge)) -> StatusResponse:
    """Process liveness plus whether the WhatsApp session can send/receive."""
    return StatusResponse(
        status="running",
        whatsapp_client_ready=bridge.session.is_ready(),
        state=bridge.session.current_state().value,
    )


# =============================================================================
# Send Route
# =============================================================================

@router.post(
    "/send-message",
    response_model=SendMessageResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": SendMessageResponse, "description": "chatId or message missing"},
        500: {"model": SendMessageResponse, "description": "Client not ready or send failed"},
    },
)
async def send_message(
    request: Request,
    payload: Optional[SendMessageRequest] = None,
    bridge: Bridge = Depends(get_bridge),
):
    """
    Send a text message via WhatsApp.

    Body:
        - chatId: target chat id
        - message: text to send
    """
    chat_id = payload.chat_id if payload else None
    text = payload.message if payload else None

    if not chat_id or not text:
        log_send_data(request, chat_id=chat_id, result="validation_error")
        return _send_failure(status.HTTP_400_BAD_REQUEST, "chatId and message are required.")

    logger.info(f"API: Received request to send message to {chat_id}")

    try:
        message_id = await bridge.send_message(chat_id, text)
    except ClientNotReadyError as e:
        log_send_data(request, chat_id=chat_id, result="not_ready")
        return _send_failure(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))
    except SendFailedError:
        log_send_data(request, chat_id=chat_id, result="failed")
        return _send_failure(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to send message.")

    log_send_data(request, chat_id=chat_id, result="sent")
    return SendMessageResponse(success=True, message_id=message_id)


def _send_failure(status_code: int, error: str) -> JSONResponse:
    body = SendMessageResponse(success=False, error=error)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


# =============================================================================
# Query Routes
# =============================================================================

@router.get("/chats", response_model=list[ChatRecord])
def list_chats(bridge: Bridge = Depends(get_bridge)) -> list[ChatRecord]:
    return bridge.store.get_chats()


@router.get("/chats/{chat_id}/messages", response_model=list[MessageRecord])
def list_chat_messages(
    chat_id: str,
    limit: Annotated[Optional[str], Query(description="Maximum number of messages (default 100)")] = None,
    offset: Annotated[Optional[str], Query(description="Number of messages to skip (default 0)")] = None,
    bridge: Bridge = Depends(get_bridge),
) -> list[MessageRecord]:
    """
    Messages of one chat, most recent first.

    limit and offset fall back to their defaults when missing or not numeric.
    """
    page_limit = parse_int(limit, DEFAULT_PAGE_LIMIT, minimum=1)
    page_offset = parse_int(offset, DEFAULT_PAGE_OFFSET, minimum=0)
    messages = bridge.store.get_messages_by_chat(chat_id, page_limit, page_offset)
    logger.debug(f"Returned {len(messages)} messages for chat {chat_id}")
    return messages


@router.get("/contacts", response_model=list[ContactRecord])
def list_contacts(bridge: Bridge = Depends(get_bridge)) -> list[ContactRecord]:
    return bridge.store.get_contacts()


# =============================================================================
# Metrics Route
# =============================================================================

@router.get("/metrics", responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}})
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


# =============================================================================
# Push Channel
# =============================================================================

@router.websocket("/ws")
async def push_channel(websocket: WebSocket):
    """
    Real-time feed of NEW_MESSAGE and WHATSAPP_READY envelopes.

    Nothing sent before the connection registered is replayed.
    """
    bridge: Bridge = websocket.app.state.bridge
    if not await authorize_websocket(websocket, bridge.settings.INTERNAL_API_SECRET):
        return

    await websocket.accept()

    async def deliver(envelope: EventEnvelope) -> None:
        await websocket.send_text(envelope.model_dump_json())

    def fell_behind():
        return websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)

    handle = bridge.bus.subscribe(deliver, on_overflow=fell_behind)
    logger.info("WebSocket client connected")
    try:
        # Inbound frames (text or binary) are ignored; reading only detects the close
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("WebSocket client disconnected")
                break
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        if websocket.application_state is WebSocketState.CONNECTED:
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        bridge.bus.unsubscribe(handle)


def run() -> None:
    """Console entry point: serve the bridge with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "wabridge.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
    )
