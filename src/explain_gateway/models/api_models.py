from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .history import HistoryRecord, HistoryStatus
from .user import Role, UserAccount


class ExplainRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source_text: str = Field(
        min_length=1,
        validation_alias=AliasChoices("sourceText", "source_text", "code"),
    )
    source_language: str = Field(
        min_length=1,
        validation_alias=AliasChoices("sourceLanguageTag", "source_language", "language"),
    )
    tier: Optional[Role] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


class OutOfCreditsResponse(BaseModel):
    success: bool = False
    error: str = "OUT_OF_CREDITS"
    message: str = "Daily explanation limit reached. Please wait for the daily reset."
    creditsRemaining: int = 0


class ProfileData(BaseModel):
    id: str
    username: str
    email: str
    role: Role
    credits: int

    @classmethod
    def from_account(cls, user: UserAccount) -> "ProfileData":
        return cls(
            id=user.id or "",
            username=user.username,
            email=user.email,
            role=user.role,
            credits=user.credits,
        )


class ProfileResponse(BaseModel):
    success: bool = True
    data: ProfileData


class HistoryItem(BaseModel):
    id: str
    source_text: str
    source_language: str
    output_text: str
    model_used: str
    status: HistoryStatus
    error: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_record(cls, record: HistoryRecord) -> "HistoryItem":
        return cls(
            id=record.id or "",
            source_text=record.source_text,
            source_language=record.source_language,
            output_text=record.output_text,
            model_used=record.model_used,
            status=record.status,
            error=record.error,
            created_at=record.created_at,
        )


class HistoryData(BaseModel):
    user: ProfileData
    history: List[HistoryItem]


class HistoryResponse(BaseModel):
    success: bool = True
    data: HistoryData
