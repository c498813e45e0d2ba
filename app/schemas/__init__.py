from .common import Attachment, ErrorResponse
from .conversation import (
    ConversationCreate,
    ConversationDetail,
    ConversationListParams,
    ConversationListResponse,
    ConversationRead,
)
from .message import (
    CancellationMessageCreate,
    CancellationMessageRead,
    MarkReadRequest,
    MarkReadResponse,
    MessageCreate,
    MessageFilters,
    MessageListResponse,
    MessageRead,
    OfferResponseMessageCreate,
    OfferResponseMessageRead,
    SystemMessageCreate,
    SystemMessageRead,
    TextMessageCreate,
    TextMessageRead,
    UnreadCountResponse,
    UserMessageCreate,
    message_create_adapter,
    message_read_adapter,
)
from .negotiation import (
    CancellationRequestBody,
    CancellationResponseBody,
    OfferResponseRequest,
    ProtocolResultRead,
    RetryNotificationRequest,
)
from .offer import (
    OfferCreate,
    OfferListResponse,
    OfferPermissionsRead,
    OfferRead,
    OfferSearchParams,
    OfferStatusChange,
    OfferSummary,
    OfferUpdate,
)
from .saved_offer import (
    SavedOfferItem,
    SavedOfferListResponse,
    SavedOfferRead,
    SavedOffersParams,
    SaveStatusResponse,
)

__all__ = [
    "Attachment",
    "ErrorResponse",
    "ConversationCreate",
    "ConversationDetail",
    "ConversationListParams",
    "ConversationListResponse",
    "ConversationRead",
    "CancellationMessageCreate",
    "CancellationMessageRead",
    "MarkReadRequest",
    "MarkReadResponse",
    "MessageCreate",
    "MessageFilters",
    "MessageListResponse",
    "MessageRead",
    "OfferResponseMessageCreate",
    "OfferResponseMessageRead",
    "SystemMessageCreate",
    "SystemMessageRead",
    "TextMessageCreate",
    "TextMessageRead",
    "UnreadCountResponse",
    "UserMessageCreate",
    "message_create_adapter",
    "message_read_adapter",
    "CancellationRequestBody",
    "CancellationResponseBody",
    "OfferResponseRequest",
    "ProtocolResultRead",
    "RetryNotificationRequest",
    "OfferCreate",
    "OfferListResponse",
    "OfferPermissionsRead",
    "OfferRead",
    "OfferSearchParams",
    "OfferStatusChange",
    "OfferSummary",
    "OfferUpdate",
    "SavedOfferItem",
    "SavedOfferListResponse",
    "SavedOfferRead",
    "SavedOffersParams",
    "SaveStatusResponse",
]
