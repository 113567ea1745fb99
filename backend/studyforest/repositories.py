"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (studies,
points, habits, fulfillments, emojis). Repositories return SQLModel
objects and flush so generated ids are available, but never commit:
services own the transaction boundary (see `database.transaction`).

Habit queries always state their active filter explicitly; soft-deleted
habits are only returned where a caller asks for them.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from sqlmodel import Session, select, col, and_, or_
from sqlalchemy import func
from . import models
from .utils.calendar import local_now

STUDY_SORTS = {
    'recent': (col(models.Study.created_at).desc(), col(models.Study.id).desc()),
    'oldest': (col(models.Study.created_at).asc(), col(models.Study.id).asc()),
    'points_desc': (col(models.Study.point_sum).desc(), col(models.Study.id).desc()),
    'points_asc': (col(models.Study.point_sum).asc(), col(models.Study.id).asc()),
}


class StudyRepository:
    """CRUD and listing queries for `Study` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, study: models.Study) -> models.Study:
        """Persist a new study and return the managed instance."""
        self.session.add(study)
        self.session.flush()
        self.session.refresh(study)
        return study

    def get(self, study_id: int) -> Optional[models.Study]:
        """Get a `Study` by primary key."""
        return self.session.get(models.Study, study_id)

    def get_for_update(self, study_id: int) -> Optional[models.Study]:
        """Fetch a study and lock its row until the transaction ends.

        Dialects without row locks (SQLite) render a plain SELECT.
        """
        stmt = select(models.Study).where(models.Study.id == study_id).with_for_update()
        return self.session.exec(stmt).first()

    def update(self, study: models.Study, fields: dict) -> models.Study:
        """Apply `fields` to `study` and bump `updated_at`."""
        for key, value in fields.items():
            setattr(study, key, value)
        study.updated_at = local_now()
        self.session.add(study)
        self.session.flush()
        self.session.refresh(study)
        return study

    def delete(self, study: models.Study) -> None:
        """Hard-delete a study together with every row that references it."""
        for model in (models.HabitFulfillment, models.Habit, models.Point, models.Emoji):
            rows = self.session.exec(select(model).where(model.study_id == study.id)).all()
            for row in rows:
                self.session.delete(row)
            self.session.flush()
        self.session.delete(study)
        self.session.flush()

    def list_page(self, offset: int, limit: int, sort: str = 'recent', search: str = '') -> Tuple[List[models.Study], int]:
        """Return one page of studies plus the total matching count.

        `search` is a case-insensitive substring match on the study name;
        unknown `sort` keys fall back to most recent first.
        """
        conditions = []
        if search:
            conditions.append(func.lower(models.Study.study_name).contains(search.lower(), autoescape=True))
        order_by = STUDY_SORTS.get(sort, STUDY_SORTS['recent'])
        stmt = select(models.Study).where(*conditions).order_by(*order_by).offset(offset).limit(limit)
        count_stmt = select(func.count()).select_from(models.Study).where(*conditions)
        return self.session.exec(stmt).all(), self.session.exec(count_stmt).one()

    def list_by_ids(self, study_ids: Sequence[int]) -> List[models.Study]:
        """Return the studies among `study_ids`, in no particular order."""
        if not study_ids:
            return []
        stmt = select(models.Study).where(col(models.Study.id).in_(study_ids))
        return self.session.exec(stmt).all()


class PointRepository:
    """Persist point awards and aggregate them per study."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, point: models.Point) -> models.Point:
        self.session.add(point)
        self.session.flush()
        self.session.refresh(point)
        return point

    def list_for_study(self, study_id: int) -> List[models.Point]:
        """All points of a study, newest first."""
        stmt = select(models.Point).where(models.Point.study_id == study_id).order_by(
            col(models.Point.created_at).desc(), col(models.Point.id).desc())
        return self.session.exec(stmt).all()

    def list_all(self) -> List[models.Point]:
        stmt = select(models.Point).order_by(col(models.Point.created_at).desc(), col(models.Point.id).desc())
        return self.session.exec(stmt).all()

    def get_for_study(self, study_id: int, point_id: int) -> Optional[models.Point]:
        """Return the point only when it belongs to `study_id`."""
        stmt = select(models.Point).where(models.Point.id == point_id, models.Point.study_id == study_id)
        return self.session.exec(stmt).first()

    def delete(self, point: models.Point) -> None:
        self.session.delete(point)
        self.session.flush()

    def sum_for_study(self, study_id: int) -> int:
        """Sum of all point values of a study (0 when it has none)."""
        stmt = select(func.coalesce(func.sum(models.Point.point), 0)).where(models.Point.study_id == study_id)
        return int(self.session.exec(stmt).one())


class HabitRepository:
    """Queries and mutations for `Habit` rows, including the bucket queries
    that join fulfillments."""
    def __init__(self, session: Session):
        self.session = session

    def find(
        self,
        study_id: int,
        is_removed: Optional[bool] = None,
        ids: Optional[Iterable[int]] = None,
        names: Optional[Iterable[str]] = None,
    ) -> List[models.Habit]:
        """Return habits of a study in id order.

        `is_removed=None` returns active and removed habits alike.
        """
        stmt = select(models.Habit).where(models.Habit.study_id == study_id)
        if is_removed is not None:
            stmt = stmt.where(models.Habit.is_removed == is_removed)
        if ids is not None:
            stmt = stmt.where(col(models.Habit.id).in_(list(ids)))
        if names is not None:
            stmt = stmt.where(col(models.Habit.habit_name).in_(list(names)))
        return self.session.exec(stmt.order_by(col(models.Habit.id))).all()

    def list_active_for_study(self, study_id: int) -> List[models.Habit]:
        """Active habits of a study, newest first."""
        stmt = select(models.Habit).where(
            models.Habit.study_id == study_id,
            models.Habit.is_removed == False,  # noqa: E712
        ).order_by(col(models.Habit.created_at).desc(), col(models.Habit.id).desc())
        return self.session.exec(stmt).all()

    def list_active(self) -> List[models.Habit]:
        """Active habits across all studies, newest first."""
        stmt = select(models.Habit).where(
            models.Habit.is_removed == False,  # noqa: E712
        ).order_by(col(models.Habit.created_at).desc(), col(models.Habit.id).desc())
        return self.session.exec(stmt).all()

    def get_for_study(self, study_id: int, habit_id: int) -> Optional[models.Habit]:
        """Return the habit only when it belongs to `study_id` (active or not)."""
        stmt = select(models.Habit).where(models.Habit.id == habit_id, models.Habit.study_id == study_id)
        return self.session.exec(stmt).first()

    def create(self, habit: models.Habit) -> models.Habit:
        self.session.add(habit)
        self.session.flush()
        self.session.refresh(habit)
        return habit

    def rename(self, habit: models.Habit, habit_name: str) -> models.Habit:
        habit.habit_name = habit_name
        habit.updated_at = local_now()
        self.session.add(habit)
        self.session.flush()
        return habit

    def soft_delete(self, habit: models.Habit) -> models.Habit:
        """Mark a habit removed; its fulfillments are left untouched."""
        habit.is_removed = True
        habit.updated_at = local_now()
        self.session.add(habit)
        self.session.flush()
        return habit

    def find_with_fulfillments(
        self,
        study_id: int,
        year: int,
        week: int,
        day: Optional[int] = None,
        include_removed_with_activity: bool = False,
    ) -> List[Tuple[models.Habit, List[models.HabitFulfillment]]]:
        """Habits of a study that match a fulfillment bucket, with that
        bucket's fulfillments attached.

        With `include_removed_with_activity=False` only active habits that
        have at least one fulfillment in the bucket are returned. With it
        set, every active habit is returned plus removed habits that have
        activity in the bucket. `day=None` widens the bucket to the whole
        week.
        """
        bucket = [
            models.HabitFulfillment.habit_id == models.Habit.id,
            models.HabitFulfillment.year == year,
            models.HabitFulfillment.week == week,
        ]
        if day is not None:
            bucket.append(models.HabitFulfillment.day == day)
        has_activity = select(models.HabitFulfillment.id).where(*bucket).exists()
        active = models.Habit.is_removed == False  # noqa: E712
        if include_removed_with_activity:
            condition = or_(active, has_activity)
        else:
            condition = and_(active, has_activity)
        stmt = select(models.Habit).where(models.Habit.study_id == study_id, condition).order_by(col(models.Habit.id))
        habits = self.session.exec(stmt).all()
        if not habits:
            return []
        fulfillments = FulfillmentRepository(self.session).find(
            habit_ids=[h.id for h in habits], year=year, week=week, day=day)
        by_habit: Dict[int, List[models.HabitFulfillment]] = defaultdict(list)
        for f in fulfillments:
            by_habit[f.habit_id].append(f)
        return [(h, by_habit.get(h.id, [])) for h in habits]


class FulfillmentRepository:
    """Create, delete and filter `HabitFulfillment` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, fulfillment: models.HabitFulfillment) -> models.HabitFulfillment:
        self.session.add(fulfillment)
        self.session.flush()
        self.session.refresh(fulfillment)
        return fulfillment

    def get(self, fulfillment_id: int) -> Optional[models.HabitFulfillment]:
        return self.session.get(models.HabitFulfillment, fulfillment_id)

    def delete(self, fulfillment: models.HabitFulfillment) -> None:
        self.session.delete(fulfillment)
        self.session.flush()

    def find(
        self,
        year: int,
        week: int,
        study_id: Optional[int] = None,
        habit_ids: Optional[Iterable[int]] = None,
        day: Optional[int] = None,
    ) -> List[models.HabitFulfillment]:
        """Fulfillments in a `(year, week[, day])` bucket, in id order."""
        stmt = select(models.HabitFulfillment).where(
            models.HabitFulfillment.year == year,
            models.HabitFulfillment.week == week,
        )
        if study_id is not None:
            stmt = stmt.where(models.HabitFulfillment.study_id == study_id)
        if habit_ids is not None:
            stmt = stmt.where(col(models.HabitFulfillment.habit_id).in_(list(habit_ids)))
        if day is not None:
            stmt = stmt.where(models.HabitFulfillment.day == day)
        return self.session.exec(stmt.order_by(col(models.HabitFulfillment.id))).all()


class EmojiRepository:
    """Query helpers and counters for `Emoji` reactions."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, emoji_id: int) -> Optional[models.Emoji]:
        return self.session.get(models.Emoji, emoji_id)

    def get_by_name(self, study_id: int, emoji_name: str) -> Optional[models.Emoji]:
        stmt = select(models.Emoji).where(models.Emoji.study_id == study_id, models.Emoji.emoji_name == emoji_name)
        return self.session.exec(stmt).first()

    def list_for_study(self, study_id: int) -> List[models.Emoji]:
        """Emojis of a study, newest first."""
        stmt = select(models.Emoji).where(models.Emoji.study_id == study_id).order_by(
            col(models.Emoji.created_at).desc(), col(models.Emoji.id).desc())
        return self.session.exec(stmt).all()

    def list_for_studies(self, study_ids: Sequence[int]) -> List[models.Emoji]:
        """Emojis of several studies, most hit first."""
        if not study_ids:
            return []
        stmt = select(models.Emoji).where(col(models.Emoji.study_id).in_(study_ids)).order_by(
            col(models.Emoji.emoji_hit).desc(), col(models.Emoji.id))
        return self.session.exec(stmt).all()

    def create(self, emoji: models.Emoji) -> models.Emoji:
        self.session.add(emoji)
        self.session.flush()
        self.session.refresh(emoji)
        return emoji

    def increment(self, emoji: models.Emoji) -> models.Emoji:
        """Add one hit to `emoji`."""
        emoji.emoji_hit += 1
        self.session.add(emoji)
        self.session.flush()
        self.session.refresh(emoji)
        return emoji

    def delete(self, emoji: models.Emoji) -> None:
        self.session.delete(emoji)
        self.session.flush()
