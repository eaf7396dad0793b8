"""Public SOS endpoints: raise/resolve and the diagnostic test push."""

from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sos_relay.core.database import get_db
from sos_relay.schemas.sos import PushTestData, PushTestRequest, PushTestResponse, SosRequest, SosResponse
from sos_relay.services.alert_service import AlertService
from sos_relay.services.push_service import PushService

router = APIRouter(tags=["sos"])
logger = structlog.get_logger(__name__)


def get_push_service() -> PushService:
    """Push collaborator dependency (overridden in tests)."""
    return PushService()


@router.post("/sos", response_model=SosResponse)
async def submit_sos(
    request: SosRequest,
    db: AsyncSession = Depends(get_db),
    push_service: PushService = Depends(get_push_service),
) -> SosResponse:
    """
    Raise (``sos_alert``) or resolve (``stop``) a sender's alert.

    Stop requests are accepted from blocked senders.

    Raises:
        ValidationError: 400 if district (or location for an alert) is missing
        ForbiddenError: 403 if a blocked sender raises an alert
        DeliveryError / StorageError: 500
    """
    service = AlertService(db, push_service)
    logger.info("sos_request_received", sender_id=request.sender_id, sos_type=request.sos_type)

    if request.sos_type == "stop":
        result = await service.resolve_alert(
            request.sender_id,
            request.district,
            user_info=request.user_info,
            timestamp=request.timestamp,
        )
        message = "SOS alert stopped successfully"
    else:
        result = await service.raise_alert(
            request.sender_id,
            request.district,
            request.location,
            user_info=request.user_info,
            timestamp=request.timestamp,
        )
        message = "SOS alert sent successfully"

    return SosResponse(
        success=True,
        message=message,
        message_id=result.message_id,
        topic=result.topic,
        sender_id=result.sender_id,
        district=result.district,
        timestamp=datetime.now(UTC),
    )


@router.post("/test-push", response_model=PushTestResponse)
async def send_test_push(
    request: PushTestRequest | None = None,
    db: AsyncSession = Depends(get_db),
    push_service: PushService = Depends(get_push_service),
) -> PushTestResponse:
    """Send a diagnostic alert to a district (default from TEST_PUSH_DEFAULT_DISTRICT)."""
    request = request or PushTestRequest()
    result = await AlertService(db, push_service).send_test_push(
        district=request.district,
        title=request.title,
        body=request.body,
    )
    return PushTestResponse(
        success=True,
        message="Test SOS alert sent successfully",
        message_id=result.message_id,
        topic=result.topic,
        district=result.district,
        sender_id=result.sender_id,
        test_data=PushTestData(location=result.location, user_info=result.user_info),
        timestamp=datetime.now(UTC),
    )
