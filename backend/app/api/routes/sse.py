"""
Server-sent event routes

EventSource cannot set headers, so the token usually arrives as ?token=.
An Authorization header is accepted as well.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from app.api.deps import (
    StaffUser, check_role, get_inventory_staff, get_notification_hub, staff_from_token,
)
from app.core.config import settings
from app.schemas.schemas import SSEStatusResponse
from app.services.notification_hub import NotificationHub

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _bearer(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


@router.get("/notifications")
async def notifications(
    request: Request,
    token: Optional[str] = Query(None),
    hub: NotificationHub = Depends(get_notification_hub),
):
    """Long-lived event stream: connected, new_order and keep-alive pings"""
    user = staff_from_token(token or _bearer(request))
    check_role(user, settings.SSE_ALLOWED_ROLES)

    stream = hub.register(user.id, user.role)

    async def event_source():
        try:
            async for frame in stream.events(settings.SSE_PING_INTERVAL_SECONDS):
                yield frame
        finally:
            hub.remove(user.id, stream)

    return StreamingResponse(event_source(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/status", response_model=SSEStatusResponse)
async def sse_status(
    user: StaffUser = Depends(get_inventory_staff),
    hub: NotificationHub = Depends(get_notification_hub),
):
    """Currently connected streams"""
    return SSEStatusResponse(
        connected_clients=hub.total_clients(),
        connected_users=hub.connected_user_ids(),
        relay=hub.relay is not None,
    )
