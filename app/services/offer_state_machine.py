"""Offer lifecycle rules.

Every legality and permission predicate for offers lives here. Services
check these before mutating, and API responses expose the same flags, so
the two can never disagree.
"""

from dataclasses import asdict, dataclass

from app.models.conversation import Conversation
from app.models.offer import Offer, OfferStatus

TRANSITIONS: dict[OfferStatus, frozenset[OfferStatus]] = {
    OfferStatus.OPEN: frozenset({OfferStatus.IN_PROGRESS, OfferStatus.CANCELLED}),
    OfferStatus.IN_PROGRESS: frozenset(
        {OfferStatus.COMPLETED, OfferStatus.CANCELLED, OfferStatus.OPEN}
    ),
    OfferStatus.CANCELLED: frozenset({OfferStatus.OPEN}),
    OfferStatus.COMPLETED: frozenset(),
}


def can_transition(current: OfferStatus, target: OfferStatus) -> bool:
    return target in TRANSITIONS[OfferStatus(current)]


@dataclass(frozen=True)
class OfferPermissions:
    can_edit: bool
    can_delete: bool
    can_cancel: bool
    can_reopen: bool
    can_complete: bool
    can_request_cancellation: bool
    can_withdraw_cancellation: bool
    can_respond_to_cancellation: bool

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)


def can_edit(offer: Offer, user_id: int) -> bool:
    return (
        offer.is_poster(user_id)
        and offer.status == OfferStatus.OPEN
        and offer.taker_id is None
    )


def can_delete(offer: Offer, user_id: int, has_conversations: bool) -> bool:
    return (
        offer.is_poster(user_id)
        and offer.status == OfferStatus.OPEN
        and not has_conversations
    )


def can_cancel(offer: Offer, user_id: int) -> bool:
    return offer.is_poster(user_id) and offer.status in (
        OfferStatus.OPEN,
        OfferStatus.IN_PROGRESS,
    )


def can_reopen(offer: Offer, user_id: int) -> bool:
    return offer.is_poster(user_id) and offer.status == OfferStatus.CANCELLED


def can_complete(offer: Offer, user_id: int) -> bool:
    return (
        offer.is_poster(user_id)
        and offer.status == OfferStatus.IN_PROGRESS
        and not offer.has_pending_cancellation()
    )


def can_request_cancellation(offer: Offer, user_id: int) -> bool:
    return (
        offer.is_taker(user_id)
        and offer.status == OfferStatus.IN_PROGRESS
        and not offer.has_pending_cancellation()
    )


def can_withdraw_cancellation(offer: Offer, user_id: int) -> bool:
    return (
        offer.has_pending_cancellation()
        and offer.cancellation_requested_by == user_id
    )


def can_respond_to_cancellation(offer: Offer, user_id: int) -> bool:
    return (
        offer.is_poster(user_id)
        and offer.has_pending_cancellation()
        and offer.cancellation_requested_by != user_id
    )


def can_change_status(offer: Offer, user_id: int, target: OfferStatus) -> bool:
    """Poster-driven transitions available outside the negotiation protocol."""
    if not can_transition(offer.status, target):
        return False
    if target == OfferStatus.CANCELLED:
        return can_cancel(offer, user_id)
    if target == OfferStatus.OPEN:
        return can_reopen(offer, user_id)
    if target == OfferStatus.COMPLETED:
        return can_complete(offer, user_id)
    return False


def permissions_for(
    offer: Offer, user_id: int, has_conversations: bool
) -> OfferPermissions:
    return OfferPermissions(
        can_edit=can_edit(offer, user_id),
        can_delete=can_delete(offer, user_id, has_conversations),
        can_cancel=can_cancel(offer, user_id),
        can_reopen=can_reopen(offer, user_id),
        can_complete=can_complete(offer, user_id),
        can_request_cancellation=can_request_cancellation(offer, user_id),
        can_withdraw_cancellation=can_withdraw_cancellation(offer, user_id),
        can_respond_to_cancellation=can_respond_to_cancellation(offer, user_id),
    )


def is_conversation_usable(conversation: Conversation, offer: Offer) -> bool:
    return conversation.is_active and offer.status != OfferStatus.CANCELLED
