from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from app.core.auth import user_id_from_token
from app.core.dependencies import DatabaseSession
from app.core.exceptions import MarketplaceError
from app.services.conversation_service import ConversationService
from app.services.realtime_service import realtime_hub
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws/conversations/{conversation_id}")
async def websocket_conversation(
    websocket: WebSocket,
    conversation_id: int,
    db: DatabaseSession,
    token: str | None = Query(None),
):
    user_id = user_id_from_token(token or websocket.cookies.get("access_token"))
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        await ConversationService(db).get_for_participant(conversation_id, user_id)
    except MarketplaceError as e:
        logger.info(
            f"Rejected feed subscription to conversation {conversation_id} "
            f"for user {user_id}: {e.detail}"
        )
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await realtime_hub.connect(websocket, conversation_id, user_id)

    try:
        while True:
            _ = await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"Conversation {conversation_id} feed disconnected for user {user_id}")
    finally:
        realtime_hub.disconnect(websocket)
