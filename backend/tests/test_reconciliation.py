import pytest
from sqlmodel import select

from studyforest import models, repositories
from studyforest.errors import InvalidInputError, NotFoundError
from studyforest.reconciliation import ById, ByName, HabitReconciler, parse_desired


def _seed(session, study_id, *names):
    repo = repositories.HabitRepository(session)
    habits = [repo.create(models.Habit(study_id=study_id, habit_name=n)) for n in names]
    session.commit()
    return habits


def _active(session, study_id):
    return repositories.HabitRepository(session).find(study_id, is_removed=False)


def test_parse_desired_tags_entries_and_skips_bad_ones():
    parsed = parse_desired([
        {"habit_id": 3, "habit_name": "Read"},
        {"habit_name": "Run"},
        {"habit_id": "7", "habit_name": "Swim"},
        {"habit_id": 0, "habit_name": "Walk"},
        {"habit_id": 4},
        {"habit_id": 5, "habit_name": ""},
        {"habit_id": "abc", "habit_name": "Nope"},
        "not an object",
    ])
    assert parsed == [ById(3, "Read"), ByName("Run"), ById(7, "Swim"), ByName("Walk")]


def test_non_list_roster_is_rejected():
    with pytest.raises(InvalidInputError):
        parse_desired({"habit_name": "Read"})


def test_creates_habits_from_names(session, make_study):
    study = make_study()
    result = HabitReconciler(session).reconcile(study.id, [{"habit_name": "Read"}, {"habit_name": "Run"}])
    assert [h.habit_name for h in result.created] == ["Read", "Run"]
    assert result.updated == [] and result.removed == [] and result.unchanged == []
    assert {h.habit_name for h in _active(session, study.id)} == {"Read", "Run"}


def test_resubmitting_the_same_roster_changes_nothing(session, make_study):
    study = make_study()
    a, b = _seed(session, study.id, "A", "B")
    desired = [{"habit_id": a.id, "habit_name": "X"}, {"habit_name": "C"}, {"habit_id": b.id, "habit_name": "B"}]
    first = HabitReconciler(session).reconcile(study.id, desired)
    assert len(first.created) == 1 and len(first.updated) == 1

    second = HabitReconciler(session).reconcile(study.id, desired)
    assert second.created == []
    assert second.updated == []
    assert second.removed == []
    assert {h.habit_name for h in second.unchanged} == {"X", "B", "C"}


def test_two_renames_to_the_same_name_collapse_to_first(session, make_study):
    study = make_study()
    a, b = _seed(session, study.id, "A", "B")
    result = HabitReconciler(session).reconcile(study.id, [
        {"habit_id": a.id, "habit_name": "X"},
        {"habit_id": b.id, "habit_name": "X"},
    ])
    assert [(h.id, h.habit_name) for h in result.updated] == [(a.id, "X")]
    assert result.removed == [b.id]
    assert [h.id for h in _active(session, study.id)] == [a.id]


def test_rename_onto_a_name_held_by_another_habit_keeps_the_holder(session, make_study):
    study = make_study()
    a, b = _seed(session, study.id, "A", "B")
    result = HabitReconciler(session).reconcile(study.id, [{"habit_id": a.id, "habit_name": "B"}])
    assert result.removed == [a.id]
    assert [h.id for h in result.unchanged] == [b.id]
    assert [h.habit_name for h in _active(session, study.id)] == ["B"]


def test_holder_still_gets_its_own_later_entry(session, make_study):
    study = make_study()
    a, b = _seed(session, study.id, "A", "B")
    result = HabitReconciler(session).reconcile(study.id, [
        {"habit_id": a.id, "habit_name": "B"},
        {"habit_id": b.id, "habit_name": "C"},
    ])
    assert [(h.id, h.habit_name) for h in result.updated] == [(b.id, "C")]
    assert result.unchanged == []
    assert result.removed == [a.id]
    assert [(h.id, h.habit_name) for h in _active(session, study.id)] == [(b.id, "C")]


def test_repeated_id_applies_entries_in_order(session, make_study):
    study = make_study()
    (a,) = _seed(session, study.id, "A")
    result = HabitReconciler(session).reconcile(study.id, [
        {"habit_id": a.id, "habit_name": "X"},
        {"habit_id": a.id, "habit_name": "Y"},
    ])
    assert [(h.id, h.habit_name) for h in result.updated] == [(a.id, "Y")]
    assert result.unchanged == [] and result.removed == [] and result.created == []
    assert [(h.id, h.habit_name) for h in _active(session, study.id)] == [(a.id, "Y")]


def test_repeated_id_keep_then_rename_reports_update_only(session, make_study):
    study = make_study()
    (a,) = _seed(session, study.id, "A")
    result = HabitReconciler(session).reconcile(study.id, [
        {"habit_id": a.id, "habit_name": "A"},
        {"habit_id": a.id, "habit_name": "Z"},
        {"habit_name": "A"},
    ])
    assert [(h.id, h.habit_name) for h in result.updated] == [(a.id, "Z")]
    assert result.unchanged == []
    assert [h.habit_name for h in result.created] == ["A"]
    assert sorted(h.habit_name for h in _active(session, study.id)) == ["A", "Z"]


def test_renamed_habit_losing_later_to_a_holder_is_only_reported_removed(session, make_study):
    study = make_study()
    a, b = _seed(session, study.id, "A", "B")
    result = HabitReconciler(session).reconcile(study.id, [
        {"habit_id": a.id, "habit_name": "X"},
        {"habit_id": a.id, "habit_name": "B"},
    ])
    assert result.updated == []
    assert result.removed == [a.id]
    assert [h.id for h in result.unchanged] == [b.id]
    assert [(h.id, h.habit_name) for h in _active(session, study.id)] == [(b.id, "B")]


def test_duplicate_bare_names_create_one_habit(session, make_study):
    study = make_study()
    result = HabitReconciler(session).reconcile(study.id, [{"habit_name": "Run"}, {"habit_name": "Run"}])
    assert len(result.created) == 1
    assert len(_active(session, study.id)) == 1


def test_habits_missing_from_roster_are_soft_deleted(session, make_study):
    study = make_study()
    a, b, c = _seed(session, study.id, "A", "B", "C")
    result = HabitReconciler(session).reconcile(study.id, [{"habit_name": "B"}])
    assert sorted(result.removed) == sorted([a.id, c.id])
    assert [h.id for h in result.unchanged] == [b.id]
    removed = session.exec(select(models.Habit).where(models.Habit.id == a.id)).one()
    assert removed.is_removed is True


def test_removed_habit_is_not_resurrected(session, make_study):
    study = make_study()
    (old,) = _seed(session, study.id, "Run")
    repositories.HabitRepository(session).soft_delete(old)
    session.commit()

    result = HabitReconciler(session).reconcile(study.id, [{"habit_name": "Run"}])
    assert len(result.created) == 1
    assert result.created[0].habit_name == "Run"
    assert result.created[0].id != old.id


def test_ids_from_another_study_are_ignored(session, make_study):
    mine = make_study("mine")
    theirs = make_study("theirs")
    (foreign,) = _seed(session, theirs.id, "Foreign")
    (own,) = _seed(session, mine.id, "Own")

    result = HabitReconciler(session).reconcile(mine.id, [{"habit_id": foreign.id, "habit_name": "Hijack"}])
    assert result.updated == [] and result.created == []
    assert result.removed == [own.id]
    assert [h.habit_name for h in _active(session, theirs.id)] == ["Foreign"]


def test_every_prior_habit_is_accounted_for_and_names_stay_unique(session, make_study):
    study = make_study()
    before = _seed(session, study.id, "A", "B", "C", "D")
    desired = [
        {"habit_id": before[0].id, "habit_name": "C"},
        {"habit_id": before[1].id, "habit_name": "Z"},
        {"habit_name": "Z"},
        {"habit_id": before[2].id, "habit_name": "Y"},
        {"habit_name": "A"},
        {"habit_id": 999999, "habit_name": "Ghost"},
    ]
    result = HabitReconciler(session).reconcile(study.id, desired)

    kept = {h.id for h in result.unchanged} | {h.id for h in result.updated}
    removed = set(result.removed)
    assert kept.isdisjoint(removed)
    assert {h.id for h in before} <= kept | removed
    names = [h.habit_name for h in _active(session, study.id)]
    assert len(names) == len(set(names))
    assert "Ghost" not in names


def test_failure_rolls_back_the_whole_batch(session, make_study, monkeypatch):
    study = make_study()
    _seed(session, study.id, "A", "B")

    def boom(self, habit):
        raise RuntimeError("store down")

    monkeypatch.setattr(repositories.HabitRepository, "soft_delete", boom)
    with pytest.raises(RuntimeError):
        HabitReconciler(session).reconcile(study.id, [{"habit_name": "C"}])

    names = {h.habit_name for h in _active(session, study.id)}
    assert names == {"A", "B"}


def test_unknown_study_raises_not_found(session):
    with pytest.raises(NotFoundError):
        HabitReconciler(session).reconcile(424242, [{"habit_name": "Read"}])
