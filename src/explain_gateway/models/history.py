from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel


class HistoryStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    DISCONNECTED = "disconnected"
    TIMED_OUT = "timed_out"


class HistoryRecord(DBSerializableModel):
    """
    One charged generation attempt: what was asked, what was streamed back.

    Written once, after the stream ends. `output_text` may be partial or
    empty when `status` is anything but `completed`.
    """

    collection_name: ClassVar[str] = "histories"
    indexes: ClassVar[tuple[str, ...]] = ("user_id", "created_at")

    id: Optional[str] = Field(default=None)
    user_id: str
    source_text: str
    source_language: str
    output_text: str = ""
    model_used: str
    status: HistoryStatus = HistoryStatus.COMPLETED
    error: Optional[str] = Field(
        default=None, description="Why the stream ended early, if it did."
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
