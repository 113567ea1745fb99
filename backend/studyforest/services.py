"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories and
auxiliary logic. Services are intentionally thin: they validate, execute
domain logic and persist aggregates via repositories, committing through
`database.transaction` so every write operation is atomic.

Missing or foreign entities raise `errors.NotFoundError`; malformed input
raises `errors.InvalidInputError`. Store errors propagate unchanged.
"""

import json
import logging
import math
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import transaction
from .errors import InvalidInputError, NotFoundError
from .reconciliation import HabitReconciler, ReconcileResult
from .utils.calendar import current_bucket, local_now
from .utils.text import normalize_name

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
MAX_BATCH_STUDIES = 3
TOP_EMOJIS = 3

logger = logging.getLogger("studyforest.services")
emoji_logger = logging.getLogger("studyforest.emojis")


def _fulfillment_out(f: models.HabitFulfillment) -> dict:
    return {
        'id': f.id,
        'habit_id': f.habit_id,
        'study_id': f.study_id,
        'year': f.year,
        'week': f.week,
        'day': f.day,
        'created_at': f.created_at,
    }


def _emoji_out(e: models.Emoji) -> dict:
    return {'id': e.id, 'emoji_name': e.emoji_name, 'emoji_hit': e.emoji_hit}


def _study_list_item(study: models.Study, emojis: List[models.Emoji]) -> dict:
    return {
        'id': study.id,
        'study_name': study.study_name,
        'study_introduction': study.study_introduction,
        'point_sum': study.point_sum,
        'background': study.background,
        'created_at': study.created_at,
        'top_emojis': [_emoji_out(e) for e in emojis[:TOP_EMOJIS]],
        'total_emoji_count': sum(e.emoji_hit for e in emojis),
    }


class StudyService:
    """Study CRUD, listing and the small per-study views."""
    def __init__(self, session: Session):
        self.session = session
        self.study_repo = repositories.StudyRepository(session)
        self.emoji_repo = repositories.EmojiRepository(session)
        self.habit_repo = repositories.HabitRepository(session)
        self.fulfillment_repo = repositories.FulfillmentRepository(session)

    def _require(self, study_id: int) -> models.Study:
        study = self.study_repo.get(study_id)
        if not study:
            raise NotFoundError(f"study not found: {study_id}")
        return study

    def _emojis_by_study(self, study_ids: Sequence[int]) -> Dict[int, List[models.Emoji]]:
        grouped: Dict[int, List[models.Emoji]] = defaultdict(list)
        for e in self.emoji_repo.list_for_studies(study_ids):
            grouped[e.study_id].append(e)
        return grouped

    def list_studies(self, page: int = 1, limit: int = 6, sort: str = 'recent', search: str = '') -> dict:
        """Return one page of studies with pagination metadata.

        Each item carries the study's three most used emojis and the total
        number of emoji hits.
        """
        if page < 1 or limit < 1:
            raise InvalidInputError("page and limit must be >= 1")
        studies, total = self.study_repo.list_page((page - 1) * limit, limit, sort=sort, search=search or '')
        emojis = self._emojis_by_study([s.id for s in studies])
        return {
            'studies': [_study_list_item(s, emojis.get(s.id, [])) for s in studies],
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'total_pages': math.ceil(total / limit),
            },
        }

    def get_study(self, study_id: int) -> models.Study:
        return self._require(study_id)

    def create_study(
        self,
        nickname: str,
        study_name: str,
        password: str,
        study_introduction: Optional[str] = None,
        background: int = 0,
        concentration_time: Optional[str] = None,
    ) -> models.Study:
        """Create a study; the password is stored as a passlib hash."""
        study = models.Study(
            nickname=nickname,
            study_name=study_name,
            study_introduction=study_introduction,
            password_hash=PWD_CTX.hash(password),
            background=background or 0,
            point_sum=0,
            concentration_time=concentration_time or settings.DEFAULT_CONCENTRATION_TIME,
        )
        with transaction(self.session):
            self.study_repo.create(study)
        return study

    def update_study(self, study_id: int, fields: dict) -> models.Study:
        """Partially update a study. Only keys present in `fields` change."""
        allowed = {'nickname', 'study_name', 'study_introduction', 'background', 'password'}
        changes = {k: v for k, v in fields.items() if k in allowed}
        if 'password' in changes:
            changes['password_hash'] = PWD_CTX.hash(changes.pop('password'))
        with transaction(self.session):
            study = self._require(study_id)
            self.study_repo.update(study, changes)
        return study

    def delete_study(self, study_id: int) -> None:
        with transaction(self.session):
            self.study_repo.delete(self._require(study_id))

    def get_study_detail(self, study_id: int, week: int) -> dict:
        """Study header, emojis and the fulfillments of `week` this year.

        Each fulfillment is joined with its habit, including removed
        habits, so past activity still renders.
        """
        study = self._require(study_id)
        year = local_now().year
        fulfillments = self.fulfillment_repo.find(year=year, week=week, study_id=study_id)
        habit_ids = {f.habit_id for f in fulfillments}
        habits = {h.id: h for h in self.habit_repo.find(study_id, ids=habit_ids)} if habit_ids else {}
        items = []
        for f in fulfillments:
            habit = habits.get(f.habit_id)
            out = _fulfillment_out(f)
            out['habit'] = {
                'habit_id': habit.id,
                'habit_name': habit.habit_name,
                'is_removed': habit.is_removed,
            } if habit else None
            items.append(out)
        return {
            'id': study.id,
            'study_name': study.study_name,
            'study_introduction': study.study_introduction,
            'point_sum': study.point_sum,
            'emojis': [_emoji_out(e) for e in self.emoji_repo.list_for_study(study_id)],
            'habit_fulfillments': items,
        }

    def verify_password(self, study_id: int, password: str) -> bool:
        """Return True when `password` matches the study's stored hash."""
        study = self.study_repo.get(study_id)
        if not study:
            return False
        return PWD_CTX.verify(password, study.password_hash)

    def get_today_concentration(self, study_id: int) -> dict:
        study = self._require(study_id)
        return {
            'study_name': study.study_name,
            'total_point': study.point_sum,
            'concentration_time': study.concentration_time,
        }

    def update_concentration_time(self, study_id: int, concentration_time: str) -> models.Study:
        with transaction(self.session):
            study = self._require(study_id)
            self.study_repo.update(study, {'concentration_time': concentration_time})
        return study

    def get_studies_by_ids(self, study_ids: Sequence[int]) -> List[dict]:
        """Return up to three studies in the order requested.

        Ids beyond the third are ignored and unknown ids are dropped.
        """
        ids = [int(i) for i in study_ids][:MAX_BATCH_STUDIES]
        found = {s.id: s for s in self.study_repo.list_by_ids(ids)}
        emojis = self._emojis_by_study(list(found))
        return [_study_list_item(found[i], emojis.get(i, [])) for i in ids if i in found]


class PointService:
    """Point awards; keeps `Study.point_sum` equal to the sum of points."""
    def __init__(self, session: Session):
        self.session = session
        self.study_repo = repositories.StudyRepository(session)
        self.point_repo = repositories.PointRepository(session)

    def list_points(self, study_id: int) -> List[models.Point]:
        return self.point_repo.list_for_study(study_id)

    def list_all_points(self) -> List[models.Point]:
        return self.point_repo.list_all()

    def _refresh_sum(self, study: models.Study) -> None:
        self.study_repo.update(study, {'point_sum': self.point_repo.sum_for_study(study.id)})

    def create_point(self, study_id: int, point_content: Optional[str], point: Optional[int]) -> models.Point:
        """Record a point award and recompute the study's total."""
        with transaction(self.session):
            study = self.study_repo.get_for_update(study_id)
            if not study:
                raise NotFoundError(f"study not found: {study_id}")
            created = self.point_repo.create(models.Point(study_id=study_id, point_content=point_content, point=point or 0))
            self._refresh_sum(study)
        return created

    def delete_point(self, study_id: int, point_id: int) -> None:
        """Delete a point of the study and recompute the study's total."""
        with transaction(self.session):
            study = self.study_repo.get_for_update(study_id)
            point = self.point_repo.get_for_study(study_id, point_id) if study else None
            if not point:
                raise NotFoundError(f"point not found for this study: {point_id}")
            self.point_repo.delete(point)
            self._refresh_sum(study)


class HabitService:
    """Habit CRUD, fulfillment recording and the today/week views."""
    def __init__(self, session: Session):
        self.session = session
        self.study_repo = repositories.StudyRepository(session)
        self.habit_repo = repositories.HabitRepository(session)
        self.fulfillment_repo = repositories.FulfillmentRepository(session)

    def _require_study(self, study_id: int) -> models.Study:
        study = self.study_repo.get(study_id)
        if not study:
            raise NotFoundError(f"study not found: {study_id}")
        return study

    def _require_habit(self, study_id: int, habit_id: int) -> models.Habit:
        habit = self.habit_repo.get_for_study(study_id, habit_id)
        if not habit:
            raise NotFoundError(f"habit not found for this study: {habit_id}")
        return habit

    def get_today_habits(self, study_id: int) -> List[dict]:
        """Active habits that were fulfilled at least once today.

        Habits without a fulfillment today are left out; callers that need
        the full roster combine this with `list_habits`.
        """
        self._require_study(study_id)
        bucket = current_bucket()
        rows = self.habit_repo.find_with_fulfillments(study_id, bucket.year, bucket.week, day=bucket.day)
        return [
            {
                'habit_id': habit.id,
                'habit_name': habit.habit_name,
                'has_fulfillment': len(fulfillments) > 0,
                'fulfillment_count': len(fulfillments),
            }
            for habit, fulfillments in rows
        ]

    def get_week_fulfillments(self, study_id: int) -> List[dict]:
        """This week's fulfillments per habit, counted by weekday.

        Includes every active habit plus removed habits that still have
        fulfillments this week.
        """
        self._require_study(study_id)
        bucket = current_bucket()
        rows = self.habit_repo.find_with_fulfillments(
            study_id, bucket.year, bucket.week, include_removed_with_activity=True)
        out = []
        for habit, fulfillments in rows:
            by_day: Dict[int, int] = {}
            for f in fulfillments:
                by_day[f.day] = by_day.get(f.day, 0) + 1
            out.append({
                'habit_id': habit.id,
                'habit_name': habit.habit_name,
                'is_removed': habit.is_removed,
                'week_fulfillments': [_fulfillment_out(f) for f in fulfillments],
                'fulfillment_count_by_day': by_day,
                'total_fulfillment_count': len(fulfillments),
            })
        return out

    def list_habits(self, study_id: int) -> List[models.Habit]:
        return self.habit_repo.list_active_for_study(study_id)

    def list_all_habits(self) -> List[models.Habit]:
        return self.habit_repo.list_active()

    def create_habits(self, study_id: int, habit_names: Sequence[str]) -> dict:
        """Create the habits among `habit_names` the study does not have yet.

        A name counts as present if any habit of the study carries it,
        removed or not. Duplicates within the request are collapsed and
        blank names are ignored, so a request with nothing usable creates
        nothing.
        """
        names: List[str] = []
        for raw in habit_names:
            name = normalize_name(raw)
            if name is not None and name not in names:
                names.append(name)
        with transaction(self.session):
            self._require_study(study_id)
            existing = {h.habit_name for h in self.habit_repo.find(study_id, names=names)}
            created = [
                self.habit_repo.create(models.Habit(study_id=study_id, habit_name=n))
                for n in names if n not in existing
            ]
        return {
            'created': created,
            'skipped': [n for n in names if n in existing],
            'total_created': len(created),
        }

    def update_habit(self, study_id: int, habit_id: int, habit_name: str) -> models.Habit:
        """Rename one habit directly, outside of batch reconciliation."""
        name = normalize_name(habit_name)
        if name is None:
            raise InvalidInputError("habit_name is required")
        with transaction(self.session):
            habit = self._require_habit(study_id, habit_id)
            self.habit_repo.rename(habit, name)
        return habit

    def delete_habit(self, study_id: int, habit_id: int) -> models.Habit:
        """Soft-delete one habit; its fulfillments are kept."""
        with transaction(self.session):
            habit = self._require_habit(study_id, habit_id)
            self.habit_repo.soft_delete(habit)
        return habit

    def reconcile(self, study_id: int, desired) -> ReconcileResult:
        return HabitReconciler(self.session).reconcile(study_id, desired)

    def create_fulfillment_today(self, study_id: int, habit_id: int) -> models.HabitFulfillment:
        """Record one fulfillment of the habit in the current bucket."""
        bucket = current_bucket()
        with transaction(self.session):
            self._require_habit(study_id, habit_id)
            fulfillment = self.fulfillment_repo.create(models.HabitFulfillment(
                habit_id=habit_id,
                study_id=study_id,
                year=bucket.year,
                week=bucket.week,
                day=bucket.day,
            ))
        logger.info("fulfillment_created %s", json.dumps(
            {'study_id': study_id, 'habit_id': habit_id, **bucket._asdict()}, ensure_ascii=True))
        return fulfillment

    def delete_fulfillment(self, fulfillment_id: int) -> None:
        with transaction(self.session):
            fulfillment = self.fulfillment_repo.get(fulfillment_id)
            if not fulfillment:
                raise NotFoundError(f"fulfillment not found: {fulfillment_id}")
            self.fulfillment_repo.delete(fulfillment)


class EmojiService:
    """Emoji reactions on studies."""
    def __init__(self, session: Session):
        self.session = session
        self.study_repo = repositories.StudyRepository(session)
        self.emoji_repo = repositories.EmojiRepository(session)

    def list_emojis(self, study_id: int) -> List[models.Emoji]:
        return self.emoji_repo.list_for_study(study_id)

    def add_emoji(self, study_id: int, emoji_name: str) -> models.Emoji:
        """Count one reaction: bump an existing emoji or create it with one hit.

        Names are NFC-normalized first so visually equal emojis sent in
        different encodings land on the same row.
        """
        name = normalize_name(emoji_name)
        if name is None:
            raise InvalidInputError("emoji_name is required")
        with transaction(self.session):
            if not self.study_repo.get_for_update(study_id):
                raise NotFoundError(f"study not found: {study_id}")
            existing = self.emoji_repo.get_by_name(study_id, name)
            if existing:
                emoji = self.emoji_repo.increment(existing)
            else:
                emoji = self.emoji_repo.create(models.Emoji(study_id=study_id, emoji_name=name, emoji_hit=1))
        emoji_logger.debug("emoji_counted %s", json.dumps(
            {'study_id': study_id, 'emoji_id': emoji.id, 'emoji_hit': emoji.emoji_hit, 'created': existing is None}))
        return emoji

    def increment_emoji(self, emoji_id: int) -> models.Emoji:
        with transaction(self.session):
            emoji = self.emoji_repo.get(emoji_id)
            if not emoji:
                raise NotFoundError(f"emoji not found: {emoji_id}")
            self.emoji_repo.increment(emoji)
        return emoji

    def delete_emoji(self, emoji_id: int) -> None:
        with transaction(self.session):
            emoji = self.emoji_repo.get(emoji_id)
            if not emoji:
                raise NotFoundError(f"emoji not found: {emoji_id}")
            self.emoji_repo.delete(emoji)
