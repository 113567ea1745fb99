"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. The batch habit roster is deliberately not
modelled here: its entries are validated one by one by
`reconciliation.parse_desired`, which skips bad entries instead of
rejecting the whole list.
"""

from datetime import datetime
from pydantic import BaseModel, Field
from typing import Dict, List, Optional

CONCENTRATION_TIME_PATTERN = r"^\d{2}:[0-5]\d:[0-5]\d$"


class StudyIn(BaseModel):
    """Payload for creating a study."""
    nickname: str = Field(min_length=1)
    study_name: str = Field(min_length=1)
    password: str = Field(min_length=1)
    study_introduction: Optional[str] = None
    background: int = 0
    concentration_time: Optional[str] = Field(default=None, pattern=CONCENTRATION_TIME_PATTERN)


class StudyUpdate(BaseModel):
    """Partial study update; omitted fields are left unchanged."""
    nickname: Optional[str] = None
    study_name: Optional[str] = None
    study_introduction: Optional[str] = None
    background: Optional[int] = None
    password: Optional[str] = None


class StudyOut(BaseModel):
    """Public study fields (the password hash is never returned)."""
    id: int
    nickname: str
    study_name: str
    study_introduction: Optional[str] = None
    background: int
    point_sum: int
    concentration_time: str
    created_at: datetime
    updated_at: datetime


class PasswordIn(BaseModel):
    password: str


class ConcentrationTimeIn(BaseModel):
    concentration_time: str = Field(pattern=CONCENTRATION_TIME_PATTERN)


class StudyBatchIn(BaseModel):
    """Up to three study ids to fetch in one call."""
    study_ids: List[int] = Field(min_length=1, max_length=3)


class PointIn(BaseModel):
    point_content: Optional[str] = None
    point: int = 0


class HabitNamesIn(BaseModel):
    habit_names: List[str] = Field(min_length=1)


class HabitUpdateIn(BaseModel):
    habit_name: str = Field(min_length=1)


class HabitOut(BaseModel):
    id: int
    study_id: int
    habit_name: str
    is_removed: bool
    created_at: datetime
    updated_at: datetime


class ReconcileOut(BaseModel):
    """Result of a batch habit update, one list per kind of change."""
    created: List[HabitOut]
    updated: List[HabitOut]
    removed: List[int]
    unchanged: List[HabitOut]


class TodayHabitOut(BaseModel):
    habit_id: int
    habit_name: str
    has_fulfillment: bool
    fulfillment_count: int


class FulfillmentOut(BaseModel):
    id: int
    habit_id: int
    study_id: int
    year: int
    week: int
    day: int
    created_at: datetime


class WeekHabitOut(BaseModel):
    habit_id: int
    habit_name: str
    is_removed: bool
    week_fulfillments: List[FulfillmentOut]
    fulfillment_count_by_day: Dict[int, int]
    total_fulfillment_count: int


class EmojiIn(BaseModel):
    study_id: int
    emoji_name: str = Field(min_length=1)
