from fastapi import status


class MarketplaceError(Exception):
    """Base for every error a core operation raises on purpose.

    Services raise these; the API layer translates them once, in
    ``app.main``, into an ``ErrorResponse`` with ``status_code``.
    """

    code: str = "marketplace_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    retryable: bool = False

    def __init__(self, detail: str, field: str | None = None):
        super().__init__(detail)
        self.detail = detail
        self.field = field


class ValidationFailed(MarketplaceError):
    code = "validation_error"
    status_code = 422


class AuthenticationRequired(MarketplaceError):
    code = "authentication_required"
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDenied(MarketplaceError):
    code = "permission_denied"
    status_code = status.HTTP_403_FORBIDDEN


class PreconditionFailed(MarketplaceError):
    code = "precondition_failed"
    status_code = status.HTTP_409_CONFLICT


class ConversationInactive(PreconditionFailed):
    code = "conversation_inactive"


class NotFound(MarketplaceError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(MarketplaceError):
    code = "conflict"
    status_code = status.HTTP_409_CONFLICT
    retryable = True


class DeleteBlocked(MarketplaceError):
    code = "delete_blocked"
    status_code = status.HTTP_409_CONFLICT
