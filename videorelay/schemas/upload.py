import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class FanOutResult(BaseModel):
    """Outcome of one schedule request. Returned to the client, never stored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    account_id: str
    account_name: str
    account_type: str
    status: Literal["success", "error"]
    error: str | None = None


class UploadResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    message: str
    upload_id: uuid.UUID
    scheduled_deletion_at: datetime
    results: list[FanOutResult]


class UploadRecordRead(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: uuid.UUID
    filename: str
    file_size_bytes: int
    mime_type: str
    title: str
    description: str
    uploaded_at: datetime
    scheduled_deletion_at: datetime
    is_deleted: bool
    deleted_at: datetime | None = None


class QuotaUsageRead(BaseModel):
    dailyUploads: int
    monthlyUploads: int
    dailyBytes: int
    monthlyBytes: int


class QuotaLimitsRead(BaseModel):
    maxDailyUploads: int
    maxMonthlyUploads: int
    maxDailyBytes: int
    maxMonthlyBytes: int


class QuotaRead(BaseModel):
    current: QuotaUsageRead
    limits: QuotaLimitsRead
