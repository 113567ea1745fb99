"""Batch reconciliation of a study's habit roster.

Clients resubmit their whole habit list on every edit. Each entry either
names an existing habit by id (`ById`, a keep-or-rename request) or only
carries a name (`ByName`, "make sure a habit with this name exists").
`HabitReconciler.reconcile` turns the stored active habits into that list
with the fewest creates, renames and soft-deletes, inside one transaction.

Entries are processed one after another in submission order, each against
the state the earlier ones left behind, so a habit named by two entries ends
up as the later one asks. The first entry to claim a name wins it. Habits
that lose a name to an earlier entry or to another active habit are
soft-deleted, as are stored habits the list no longer mentions.
Resubmitting the same list is a no-op that reports every habit as
unchanged.

Removed habits are never revived: they are not part of the loaded set, so
a `ByName` entry matching only a removed habit creates a new one.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set, Union

from sqlmodel import Session

from . import models, repositories
from .database import transaction
from .errors import InvalidInputError, NotFoundError
from .utils.text import normalize_name

logger = logging.getLogger("studyforest.habits")


@dataclass(frozen=True)
class ById:
    """Keep habit `habit_id`, renaming it to `habit_name` if needed."""
    habit_id: int
    habit_name: str


@dataclass(frozen=True)
class ByName:
    """Ensure an active habit called `habit_name` exists."""
    habit_name: str


DesiredHabit = Union[ById, ByName]


@dataclass
class ReconcileResult:
    """Outcome of a reconciliation, one list per kind of change."""
    created: List[models.Habit] = field(default_factory=list)
    updated: List[models.Habit] = field(default_factory=list)
    removed: List[int] = field(default_factory=list)
    unchanged: List[models.Habit] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "removed": len(self.removed),
            "unchanged": len(self.unchanged),
        }


def _coerce_id(raw) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().lstrip("-").isdigit():
        return int(raw.strip())
    return None


def parse_desired(entries) -> List[DesiredHabit]:
    """Turn a raw JSON habit list into `ById`/`ByName` entries.

    Raises InvalidInputError when `entries` is not a list. Individual
    entries without a usable `habit_name`, or with a `habit_id` that is
    not an integer, are dropped. A missing, empty or zero `habit_id`
    means the entry is name-only.
    """
    if not isinstance(entries, (list, tuple)):
        raise InvalidInputError("habits must be a list")
    parsed: List[DesiredHabit] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        name = normalize_name(entry.get("habit_name"))
        if name is None:
            continue
        raw_id = entry.get("habit_id")
        if raw_id in (None, "", 0):
            parsed.append(ByName(name))
            continue
        habit_id = _coerce_id(raw_id)
        if habit_id is None:
            continue
        parsed.append(ById(habit_id, name))
    return parsed


class _Batch:
    """Lookups and bookkeeping for one reconciliation run."""

    def __init__(self, habits: List[models.Habit]):
        self.loaded = habits
        self.by_id: Dict[int, models.Habit] = {h.id: h for h in habits}
        self.by_name: Dict[str, models.Habit] = {}
        for h in habits:
            # lowest id wins if the store already holds duplicates
            self.by_name.setdefault(h.habit_name, h)
        # name -> id of the habit that claimed it in this batch
        self.assigned: Dict[str, int] = {}
        # ids that survive the final sweep
        self.kept: Set[int] = set()
        self.removed: Set[int] = set()
        self.result = ReconcileResult()

    def keep(self, habit: models.Habit) -> None:
        self.kept.add(habit.id)
        self.assigned[habit.habit_name] = habit.id

    def release(self, habit: models.Habit) -> None:
        for name in [n for n, owner in self.assigned.items() if owner == habit.id]:
            del self.assigned[name]

    def forget(self, habit: models.Habit) -> None:
        self.by_id.pop(habit.id, None)
        if self.by_name.get(habit.habit_name) is habit:
            del self.by_name[habit.habit_name]

    def reported(self, habit: models.Habit) -> bool:
        res = self.result
        return any(h.id == habit.id for h in res.created + res.updated + res.unchanged)

    def unreport(self, habit: models.Habit) -> None:
        res = self.result
        for bucket in (res.created, res.updated, res.unchanged):
            bucket[:] = [h for h in bucket if h.id != habit.id]

    def mark_unchanged(self, habit: models.Habit) -> None:
        if not self.reported(habit):
            self.result.unchanged.append(habit)

    def mark_updated(self, habit: models.Habit) -> None:
        res = self.result
        if any(h.id == habit.id for h in res.created + res.updated):
            return
        res.unchanged[:] = [h for h in res.unchanged if h.id != habit.id]
        res.updated.append(habit)


class HabitReconciler:
    """Apply a desired habit roster to a study atomically."""

    def __init__(self, session: Session):
        self.session = session
        self.study_repo = repositories.StudyRepository(session)
        self.habit_repo = repositories.HabitRepository(session)

    def reconcile(self, study_id: int, desired) -> ReconcileResult:
        """Reconcile the study's active habits with `desired`.

        `desired` is the raw list from the request body. The study row is
        locked for the duration so two rosters for the same study cannot
        interleave. Any failure rolls back every change.
        """
        entries = parse_desired(desired)
        with transaction(self.session):
            study = self.study_repo.get_for_update(study_id)
            if not study:
                raise NotFoundError(f"study not found: {study_id}")
            batch = _Batch(self.habit_repo.find(study_id, is_removed=False))
            for entry in entries:
                if isinstance(entry, ById):
                    self._apply_by_id(study_id, batch, entry)
                else:
                    self._apply_by_name(study_id, batch, entry)
            for habit in batch.loaded:
                if habit.id in batch.removed:
                    continue
                if habit.id in batch.kept:
                    # holders kept on behalf of another entry
                    batch.mark_unchanged(habit)
                else:
                    self._remove(batch, habit)
        logger.info(
            "habits_reconciled %s",
            json.dumps({"study_id": study_id, "entries": len(entries), **batch.result.summary}, ensure_ascii=True),
        )
        return batch.result

    def _apply_by_id(self, study_id: int, batch: _Batch, entry: ById) -> None:
        habit = batch.by_id.get(entry.habit_id)
        if habit is None or habit.study_id != study_id:
            return
        name = entry.habit_name
        if habit.habit_name == name:
            if batch.assigned.get(name, habit.id) != habit.id:
                # store already held a duplicate and the other one won the name
                self._remove(batch, habit)
                return
            batch.mark_unchanged(habit)
            batch.keep(habit)
            return
        if name in batch.assigned:
            self._remove(batch, habit)
            return
        holder = batch.by_name.get(name)
        if holder is not None and holder.id != habit.id:
            self._remove(batch, habit)
            batch.keep(holder)
            return
        old_name = habit.habit_name
        self.habit_repo.rename(habit, name)
        batch.release(habit)
        if batch.by_name.get(old_name) is habit:
            del batch.by_name[old_name]
        batch.by_name[name] = habit
        batch.mark_updated(habit)
        batch.keep(habit)

    def _apply_by_name(self, study_id: int, batch: _Batch, entry: ByName) -> None:
        name = entry.habit_name
        if name in batch.assigned:
            return
        existing = batch.by_name.get(name)
        if existing is not None:
            batch.mark_unchanged(existing)
            batch.keep(existing)
            return
        created = self.habit_repo.create(models.Habit(study_id=study_id, habit_name=name))
        batch.by_id[created.id] = created
        batch.by_name[name] = created
        batch.result.created.append(created)
        batch.keep(created)

    def _remove(self, batch: _Batch, habit: models.Habit) -> None:
        self.habit_repo.soft_delete(habit)
        batch.kept.discard(habit.id)
        batch.removed.add(habit.id)
        batch.release(habit)
        batch.unreport(habit)
        batch.forget(habit)
        batch.result.removed.append(habit.id)
