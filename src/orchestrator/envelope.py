"""Response envelope construction."""

from typing import Optional

from shared.models import ChatErrorCode, ChatResponse, ChatStatus, ModelResolution


def success(
    session_id: str,
    model: str,
    text: str,
    resolution: Optional[ModelResolution] = None
) -> ChatResponse:
    """Build a Completed envelope carrying the assistant reply."""
    return ChatResponse(
        id=session_id,
        model=model,
        response=text,
        status=ChatStatus.COMPLETED,
        requested_model=resolution.requested if resolution else None,
        model_substituted=resolution.substituted if resolution else False,
    )


def failure(
    session_id: str,
    model: str,
    message: str,
    code: ChatErrorCode = ChatErrorCode.INTERNAL_ERROR,
    resolution: Optional[ModelResolution] = None
) -> ChatResponse:
    """Build an Error envelope carrying a human-readable message."""
    return ChatResponse(
        id=session_id,
        model=model,
        status=ChatStatus.ERROR,
        error=message,
        error_code=code,
        requested_model=resolution.requested if resolution else None,
        model_substituted=resolution.substituted if resolution else False,
    )
