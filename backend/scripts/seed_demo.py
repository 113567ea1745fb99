"""CLI script to seed a demo study with habits, points and reactions.
Usage: python scripts/seed_demo.py [--name NAME] [--habits "Read,Run,Sleep early"]
"""
import sys
import argparse
import pathlib
from typing import List
# Ensure `backend/` is on sys.path so `studyforest` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from studyforest.database import engine, create_db_and_tables
from studyforest import services


def main(name: str, habits: List[str]):
    """Create a study, reconcile its habit roster and record some activity.

    Results are printed to stdout for a quick CLI feedback loop.
    """
    create_db_and_tables()
    with Session(engine, expire_on_commit=False) as session:
        study = services.StudyService(session).create_study(nickname='demo', study_name=name, password='demo')
        print(f'Created study {study.id}: {study.study_name}')
        habit_svc = services.HabitService(session)
        result = habit_svc.reconcile(study.id, [{'habit_name': h} for h in habits])
        print(f'Habits: {result.summary}')
        for habit in result.created[:2]:
            habit_svc.create_fulfillment_today(study.id, habit.id)
        services.PointService(session).create_point(study.id, 'Focus session', 10)
        services.EmojiService(session).add_emoji(study.id, '🔥')
        for row in habit_svc.get_week_fulfillments(study.id):
            print(f"  {row['habit_name']}: {row['total_fulfillment_count']} this week")


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--name', default='Demo study', help='Study name')
    parser.add_argument('--habits', default='Read,Run,Sleep early', help='Comma-separated habit names')
    args = parser.parse_args()
    main(args.name, [h.strip() for h in args.habits.split(',') if h.strip()])
