import logging
import json
from datetime import datetime, timezone

from app.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

negotiation_logger = logging.getLogger("negotiation")


def _emit(level: int, message: str, log_data: dict[str, object]) -> None:
    log_data["timestamp"] = datetime.now(timezone.utc).isoformat()
    negotiation_logger.log(level, f"{message}: {json.dumps(log_data, default=str)}")


class NegotiationLogger:
    @staticmethod
    def log_offer_transition(
        offer_id: int,
        from_status: str,
        to_status: str,
        actor_id: int | None = None,
        taker_id: int | None = None,
    ):
        log_data: dict[str, object] = {
            "event_type": "offer_transition",
            "offer_id": offer_id,
            "from_status": from_status,
            "to_status": to_status,
        }

        if actor_id is not None:
            log_data["actor_id"] = actor_id
        if taker_id is not None:
            log_data["taker_id"] = taker_id

        _emit(logging.INFO, f"Offer {from_status} -> {to_status}", log_data)

    @staticmethod
    def log_cancellation_event(
        offer_id: int,
        step: str,
        actor_id: int,
        conversation_id: int | None = None,
        additional_data: dict[str, object] | None = None,
    ):
        log_data: dict[str, object] = {
            "event_type": "cancellation_protocol",
            "step": step,
            "offer_id": offer_id,
            "actor_id": actor_id,
        }

        if conversation_id is not None:
            log_data["conversation_id"] = conversation_id
        if additional_data:
            log_data.update(additional_data)

        _emit(logging.INFO, f"Cancellation {step}", log_data)

    @staticmethod
    def log_rejected_action(
        action: str,
        actor_id: int,
        reason: str,
        offer_id: int | None = None,
        conversation_id: int | None = None,
    ):
        log_data: dict[str, object] = {
            "event_type": "rejected_action",
            "action": action,
            "actor_id": actor_id,
            "reason": reason,
        }

        if offer_id is not None:
            log_data["offer_id"] = offer_id
        if conversation_id is not None:
            log_data["conversation_id"] = conversation_id

        _emit(logging.WARNING, f"Rejected {action}", log_data)

    @staticmethod
    def log_notification_failure(
        conversation_id: int,
        step: str,
        error: str,
        offer_id: int | None = None,
    ):
        log_data: dict[str, object] = {
            "event_type": "notification_failure",
            "step": step,
            "conversation_id": conversation_id,
            "error": error,
        }

        if offer_id is not None:
            log_data["offer_id"] = offer_id

        _emit(logging.ERROR, f"Protocol message not emitted after {step}", log_data)
