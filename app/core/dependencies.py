from typing import Annotated

from fastapi import Cookie, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.conversation_service import ConversationService
from app.services.message_service import MessageService
from app.services.negotiation_service import NegotiationService
from app.services.offer_service import OfferService
from app.services.saved_offer_service import SavedOfferService
from .auth import user_id_from_token
from .exceptions import AuthenticationRequired
from .sentry_helpers import set_user_context

DatabaseSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user_id(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(HTTPBearer(auto_error=False))
    ],
    access_token: str | None = Cookie(None),
) -> int:
    token = credentials.credentials if credentials else access_token
    if not token:
        raise AuthenticationRequired("Not authenticated")

    user_id = user_id_from_token(token)
    if user_id is None:
        raise AuthenticationRequired("Invalid or expired token")

    set_user_context(user_id)
    return user_id


CurrentUserId = Annotated[int, Depends(get_current_user_id)]


async def get_offer_service(db: DatabaseSession) -> OfferService:
    return OfferService(db)


async def get_conversation_service(db: DatabaseSession) -> ConversationService:
    return ConversationService(db)


async def get_message_service(db: DatabaseSession) -> MessageService:
    return MessageService(db)


async def get_negotiation_service(db: DatabaseSession) -> NegotiationService:
    return NegotiationService(db)


async def get_saved_offer_service(db: DatabaseSession) -> SavedOfferService:
    return SavedOfferService(db)


OfferServiceDep = Annotated[OfferService, Depends(get_offer_service)]
ConversationServiceDep = Annotated[ConversationService, Depends(get_conversation_service)]
MessageServiceDep = Annotated[MessageService, Depends(get_message_service)]
NegotiationServiceDep = Annotated[NegotiationService, Depends(get_negotiation_service)]
SavedOfferServiceDep = Annotated[SavedOfferService, Depends(get_saved_offer_service)]
