"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.
Timestamps are produced in the application timezone.
"""

from typing import Optional
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime
from typing import List

from .utils.calendar import local_now


class Study(SQLModel, table=True):
    """A study group.

    Fields:
    - `password_hash`: passlib hash of the study password (never plaintext)
    - `point_sum`: cached sum of the study's `Point` rows
    - `concentration_time`: focus timer length as `HH:MM:SS`
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    nickname: str
    study_name: str = Field(index=True)
    study_introduction: Optional[str] = None
    password_hash: str
    background: int = 0
    point_sum: int = Field(default=0, index=True)
    concentration_time: str = "00:25:00"
    created_at: datetime = Field(default_factory=local_now, index=True)
    updated_at: datetime = Field(default_factory=local_now)
    habits: List['Habit'] = Relationship(back_populates='study')


class Point(SQLModel, table=True):
    """A point award recorded against a study."""
    id: Optional[int] = Field(default=None, primary_key=True)
    study_id: int = Field(foreign_key='study.id', index=True)
    point_content: Optional[str] = None
    point: int = 0
    created_at: datetime = Field(default_factory=local_now)


class Habit(SQLModel, table=True):
    """A recurring habit owned by a study.

    Habits are soft-deleted by flipping `is_removed`; the row and its
    fulfillments are kept so past weeks still render.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    study_id: int = Field(foreign_key='study.id', index=True)
    habit_name: str = Field(index=True)
    is_removed: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=local_now)
    updated_at: datetime = Field(default_factory=local_now)
    study: Optional[Study] = Relationship(back_populates='habits')
    fulfillments: List['HabitFulfillment'] = Relationship(back_populates='habit')


class HabitFulfillment(SQLModel, table=True):
    """One completion of a habit, bucketed by `(year, week, day)`.

    `study_id` is denormalized from the habit for per-study week queries.
    Several rows may share a bucket; they are counted, not merged.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    habit_id: int = Field(foreign_key='habit.id', index=True)
    study_id: int = Field(foreign_key='study.id', index=True)
    year: int = Field(index=True)
    week: int = Field(index=True)
    day: int
    created_at: datetime = Field(default_factory=local_now)
    habit: Optional[Habit] = Relationship(back_populates='fulfillments')


class Emoji(SQLModel, table=True):
    """An emoji reaction on a study with its accumulated hit count."""
    id: Optional[int] = Field(default=None, primary_key=True)
    study_id: int = Field(foreign_key='study.id', index=True)
    emoji_name: str
    emoji_hit: int = 1
    created_at: datetime = Field(default_factory=local_now)
