from pydantic import BaseModel, Field

from chanjo.persistence.istore import BATCH_MAX_ITEMS


class ReminderConfigModel(BaseModel):
    batch_size: int = Field(default=BATCH_MAX_ITEMS, ge=1, le=BATCH_MAX_ITEMS)
    daily_period_sec: int = Field(default=24 * 60 * 60, ge=60)
    dispatch_concurrency: int = Field(default=4, ge=1)
    enabled: bool = True
    hour: int = Field(default=11, ge=0, le=23)
    sender_name: str = "Chanjo Chonjo"
    weekly_period_sec: int = Field(default=7 * 24 * 60 * 60, ge=60)
