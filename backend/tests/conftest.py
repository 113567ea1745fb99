from pathlib import Path
import os
import tempfile

import pytest

# Point the app at a throwaway SQLite file before `studyforest` is imported.
_DB_DIR = Path(tempfile.mkdtemp(prefix="studyforest-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ["APP_TIMEZONE"] = "Asia/Seoul"

from sqlmodel import SQLModel, Session  # noqa: E402

from studyforest import services  # noqa: E402
from studyforest.database import engine  # noqa: E402


@pytest.fixture(autouse=True)
def reset_db():
    """Give every test empty tables."""
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    yield


@pytest.fixture
def session():
    with Session(engine, expire_on_commit=False) as s:
        yield s


@pytest.fixture
def make_study(session):
    def _make(name="Morning study", password="pw"):
        return services.StudyService(session).create_study(nickname="tester", study_name=name, password=password)
    return _make
