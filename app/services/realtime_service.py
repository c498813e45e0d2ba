from fastapi import WebSocket
from typing import Any
from collections import defaultdict
import json
import logging
import time

logger = logging.getLogger(__name__)


class RealtimeHub:
    """In-process change feed for conversations and per-user channels.

    Delivery is best effort. A socket that fails to receive is dropped and
    logged; publishing never raises into the caller, so the store stays the
    only source of truth for messages and unread counts.
    """

    def __init__(self):
        self.user_connections: dict[int, set[WebSocket]] = defaultdict(set)
        self.conversation_connections: dict[int, set[WebSocket]] = defaultdict(set)
        self.connection_metadata: dict[WebSocket, dict[str, Any]] = {}

    async def connect(self, websocket: WebSocket, conversation_id: int, user_id: int):
        await websocket.accept()

        self.connection_metadata[websocket] = {
            "conversation_id": conversation_id,
            "user_id": user_id,
            "connected_at": time.time(),
        }
        self.conversation_connections[conversation_id].add(websocket)
        self.user_connections[user_id].add(websocket)

        logger.info(
            f"Conversation connection added for conversation {conversation_id} "
            f"(user {user_id})"
        )

    def disconnect(self, websocket: WebSocket):
        metadata = self.connection_metadata.pop(websocket, None)

        self._remove_from_dict_sets(self.user_connections, websocket)
        self._remove_from_dict_sets(self.conversation_connections, websocket)

        if metadata:
            logger.info(
                f"Connection closed for conversation {metadata['conversation_id']} "
                f"(user {metadata['user_id']})"
            )

    def _remove_from_dict_sets(
        self, dict_sets: dict[int, set[WebSocket]], websocket: WebSocket
    ):
        keys_to_remove = []
        for key, connection_set in dict_sets.items():
            connection_set.discard(websocket)
            if not connection_set:
                keys_to_remove.append(key)

        for key in keys_to_remove:
            del dict_sets[key]

    def is_user_connected(self, user_id: int) -> bool:
        return bool(self.user_connections.get(user_id))

    async def _deliver(self, targets: set[WebSocket], event: dict[str, Any], label: str):
        message_str = json.dumps(event, default=str)
        dead_connections = set()

        for websocket in targets.copy():
            try:
                await websocket.send_text(message_str)
            except Exception as e:
                logger.warning(f"Failed to deliver {event.get('type')} to {label}: {e}")
                dead_connections.add(websocket)

        for websocket in dead_connections:
            self.disconnect(websocket)

    async def publish(
        self,
        conversation_id: int,
        event: dict[str, Any],
        exclude_user_id: int | None = None,
    ):
        if conversation_id not in self.conversation_connections:
            logger.debug(f"No connections found for conversation {conversation_id}")
            return

        targets = {
            websocket
            for websocket in self.conversation_connections[conversation_id]
            if exclude_user_id is None
            or self.connection_metadata.get(websocket, {}).get("user_id")
            != exclude_user_id
        }
        await self._deliver(targets, event, f"conversation {conversation_id}")

    async def send_to_user(self, user_id: int, event: dict[str, Any]):
        if user_id not in self.user_connections:
            logger.debug(f"No connections found for user {user_id}")
            return

        await self._deliver(self.user_connections[user_id], event, f"user {user_id}")

    def get_connection_stats(self) -> dict[str, Any]:
        return {
            "user_connections": {k: len(v) for k, v in self.user_connections.items()},
            "conversation_connections": {
                k: len(v) for k, v in self.conversation_connections.items()
            },
            "total_connections": len(self.connection_metadata),
        }


def merge_message_event(
    timeline: list[dict[str, Any]], message: dict[str, Any]
) -> list[dict[str, Any]]:
    """Merge a ``message_inserted`` payload into a local timeline.

    Feed delivery is at-least-once, so a payload whose id is already present
    replaces the stored copy instead of adding a second entry. The result is
    ordered by ``(created_at, id)`` like the store.
    """
    merged = {item["id"]: item for item in timeline}
    merged[message["id"]] = message
    return sorted(merged.values(), key=lambda item: (item["created_at"], item["id"]))


realtime_hub = RealtimeHub()
