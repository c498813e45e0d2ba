from .base import Base
from .conversation import Conversation
from .message import (
    CancellationRequestType,
    Message,
    MessageType,
    OfferResponseType,
)
from .offer import Offer, OfferStatus, OfferType
from .saved_offer import SavedOffer

__all__ = [
    "Base",
    "Offer",
    "OfferStatus",
    "OfferType",
    "SavedOffer",
    "Conversation",
    "Message",
    "MessageType",
    "OfferResponseType",
    "CancellationRequestType",
]
