import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from oa_console import storage
from oa_console.config import get_settings
from oa_console.errors import (
    AuthenticityError,
    LineApiError,
    MissingSignatureError,
    ObjectStorageError,
    PayloadValidationError,
)
from oa_console.ingestion import WebhookIngestor, parse_batch, verify_delivery
from oa_console.line_api import LineMessagingClient, get_line_client
from oa_console.logging_utils import RequestLoggingMiddleware, log_webhook_data, setup_logging
from oa_console.media import MediaRelay, refresh_page
from oa_console.metrics import get_metrics, get_metrics_content_type, record_webhook_outcome
from oa_console.object_storage import ObjectStorage, get_object_storage
from oa_console.outbound import OutboundSender
from oa_console.schemas import (
    ErrorResponse,
    HealthResponse,
    Message,
    MessagePage,
    SendMessageRequest,
    UploadCompleteRequest,
    UploadCompleteResponse,
    UploadInitRequest,
    UploadInitResponse,
    UserProfile,
    WebhookResponse,
)
from oa_console.storage import check_db_health, get_db, init_db
from oa_console.utils import now_ms


settings = get_settings()

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="LINE OA Console API",
    description="Webhook ingestion, message history and operator replies for a LINE official account",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


def get_media_relay(
    line_client: LineMessagingClient = Depends(get_line_client),
    object_storage: ObjectStorage = Depends(get_object_storage),
) -> MediaRelay:
    return MediaRelay(line_client, object_storage)


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. CHANNEL_SECRET and CHANNEL_ACCESS_TOKEN are set (non-empty)
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.CHANNEL_SECRET or not settings.CHANNEL_ACCESS_TOKEN:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="LINE channel credentials not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Database not reachable or schema not applied")

    return HealthResponse(status="ready")


# =============================================================================
# Webhook Route
# =============================================================================

@app.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing signature or unparseable body"},
        403: {"model": ErrorResponse, "description": "Invalid signature"},
    }
)
async def webhook(
    request: Request,
    x_line_signature: Annotated[str | None, Header(alias="x-line-signature")] = None,
    db: Session = Depends(get_db),
    relay: MediaRelay = Depends(get_media_relay),
) -> WebhookResponse:
    """
    Ingest a LINE webhook delivery.

    - Verifies x-line-signature (base64 HMAC-SHA256 of the raw body with
      CHANNEL_SECRET) before parsing anything
    - Stores text and image message events; other events are ignored
    - Idempotent: redelivered message ids are not stored twice
    - Acknowledges the whole delivery once every event was attempted
    """
    raw_body = await request.body()

    try:
        verify_delivery(raw_body, x_line_signature, settings.CHANNEL_SECRET)
    except AuthenticityError as e:
        missing = isinstance(e, MissingSignatureError)
        result = "missing_signature" if missing else "invalid_signature"
        logger.warning(f"Rejected webhook delivery: {e}")
        record_webhook_outcome(result)
        log_webhook_data(request, result=result)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST if missing else status.HTTP_403_FORBIDDEN,
            detail=str(e),
        )

    try:
        events = parse_batch(raw_body)
    except PayloadValidationError as e:
        logger.error(f"Unparseable webhook body: {e}")
        record_webhook_outcome("invalid_body")
        log_webhook_data(request, result="invalid_body")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    summary = await WebhookIngestor(db, relay).ingest(events)

    record_webhook_outcome("ok")
    log_webhook_data(request, result="ok", summary=summary.as_log_data())
    return WebhookResponse(status="ok")


# =============================================================================
# Messages Routes
# =============================================================================

@app.get("/messages", response_model=MessagePage)
async def list_messages(
    odna: Annotated[str | None, Query(description="Counterpart user id; omit for the cross-user recent feed")] = None,
    limit: Annotated[int | None, Query(ge=1, description="Page size")] = None,
    before: Annotated[int | None, Query(description="Only messages with timestamp < before (ms)")] = None,
    before_id: Annotated[str | None, Query(alias="beforeId", description="Tie-breaking id for the before cursor")] = None,
    db: Session = Depends(get_db),
    object_storage: ObjectStorage = Depends(get_object_storage),
) -> MessagePage:
    """
    Page through stored messages, newest page first.

    Each page is returned in chronological order. To load older messages,
    pass the timestamp (and id) of the oldest message already held as
    before (and beforeId).

    Images kept in our bucket get a freshly signed URL on every read.
    """
    page_size = min(limit or settings.MESSAGES_PER_PAGE, settings.MAX_PAGE_SIZE)
    page = storage.query_page(db, odna=odna, limit=page_size, before=before, before_id=before_id)
    return await run_in_threadpool(refresh_page, page, object_storage)


@app.post(
    "/messages",
    response_model=Message,
    responses={
        400: {"model": ErrorResponse, "description": "Missing required field"},
        500: {"model": ErrorResponse, "description": "Push or persistence failed"},
    }
)
async def send_message(
    body: SendMessageRequest,
    db: Session = Depends(get_db),
    line_client: LineMessagingClient = Depends(get_line_client),
    object_storage: ObjectStorage = Depends(get_object_storage),
) -> Message:
    """Push an operator message to a LINE user and record it as outgoing."""
    try:
        return await OutboundSender(db, line_client, object_storage).send(body)
    except PayloadValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to send message to {body.odna}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="failed to send message",
        )


# =============================================================================
# Profile Routes
# =============================================================================

def _line_error_status(e: LineApiError) -> int:
    if e.status_code and 400 <= e.status_code < 600:
        return e.status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.get("/users/{user_id}", response_model=UserProfile)
async def get_user_profile(
    user_id: str,
    line_client: LineMessagingClient = Depends(get_line_client),
) -> UserProfile:
    """Display name and picture of a LINE user, as LINE reports them."""
    try:
        return UserProfile.model_validate(await line_client.get_profile(user_id))
    except LineApiError as e:
        raise HTTPException(status_code=_line_error_status(e), detail="failed to fetch user profile")


@app.get("/profile")
async def get_bot_profile(line_client: LineMessagingClient = Depends(get_line_client)) -> dict:
    """Bot info of the official account itself."""
    try:
        return await line_client.get_bot_info()
    except LineApiError as e:
        raise HTTPException(status_code=_line_error_status(e), detail="failed to fetch bot info")


# =============================================================================
# Upload Routes
# =============================================================================

@app.post("/upload/init", response_model=UploadInitResponse)
async def upload_init(
    body: UploadInitRequest,
    object_storage: ObjectStorage = Depends(get_object_storage),
) -> UploadInitResponse:
    """Step one of an operator upload: a presigned URL to PUT the file to."""
    if not body.file_name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no filename provided")

    path = f"{now_ms()}-{body.file_name}"
    try:
        upload_url = await run_in_threadpool(object_storage.upload_url, path)
    except ObjectStorageError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="failed to generate upload URL",
        )
    return UploadInitResponse(upload_url=upload_url, path=path)


@app.post("/upload", response_model=UploadCompleteResponse)
async def upload_complete(
    body: UploadCompleteRequest,
    object_storage: ObjectStorage = Depends(get_object_storage),
) -> UploadCompleteResponse:
    """Step two: the durable read URL of an uploaded file, ready to send."""
    if not body.path:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no path provided")

    try:
        url = await run_in_threadpool(object_storage.durable_url, body.path)
    except ObjectStorageError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="failed to generate URL",
        )
    return UploadCompleteResponse(url=url)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
