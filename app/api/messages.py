from fastapi import APIRouter, Response, status

from app.core.dependencies import CurrentUserId, MessageServiceDep

router = APIRouter()


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: int,
    current_user_id: CurrentUserId,
    message_service: MessageServiceDep,
) -> Response:
    await message_service.delete_message(message_id, current_user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
