"""
Pydantic request models for API endpoints.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from src.types.history import QueryContext
from src.types.usage import UserTier

MAX_QUESTION_LENGTH = 4000
MAX_MODEL_LENGTH = 200
MAX_EXPORT_IDS = 1000


class AskRequest(BaseModel):
    """Request model for single-shot and streamed questions."""

    question: str = Field(..., description="Question about the page, 1-4000 characters")
    context: Optional[QueryContext] = None
    model: Optional[str] = Field(
        default=None,
        max_length=MAX_MODEL_LENGTH,
        description="OpenRouter model override; the tier default is used when omitted",
    )

    @field_validator("question")
    @classmethod
    def validate_question(cls, v: str) -> str:
        """Trim and bound the question."""
        v = v.strip()
        if not v:
            raise ValueError("Question must not be empty")
        if len(v) > MAX_QUESTION_LENGTH:
            raise ValueError(f"Question exceeds maximum length of {MAX_QUESTION_LENGTH}")
        return v

    @field_validator("model")
    @classmethod
    def blank_model_is_default(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v


class CreateProfileRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    tier: UserTier = UserTier.FREE


class UpdateProfileRequest(BaseModel):
    tier: Optional[UserTier] = None


class ExportHistoryRequest(BaseModel):
    """
    Request model for history export.

    `format` is checked by the history service so that an unsupported value
    is reported as a 400 validation error.
    """

    format: str = Field(default="markdown", max_length=20)
    query_ids: Optional[List[int]] = Field(default=None, max_length=MAX_EXPORT_IDS)


class CheckoutRequest(BaseModel):
    price_id: str = Field(..., min_length=1, max_length=200)
    success_url: str = Field(..., min_length=1, max_length=2000)
    cancel_url: str = Field(..., min_length=1, max_length=2000)


class PortalRequest(BaseModel):
    return_url: str = Field(..., min_length=1, max_length=2000)
