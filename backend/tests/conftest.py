import os

# must be set before backend.app.db.session builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.session import SessionLocal, make_engine
from backend.app.db.models.models_v1 import Base, Collection
from backend.services.ship_window import SqlCollectionProvider, StaticCollectionProvider
from backend.tests.factories import CORE, HOLIDAY, SPRING, SUMMER


@pytest.fixture
def provider():
    return StaticCollectionProvider([SPRING, SUMMER, HOLIDAY, CORE])


@pytest.fixture(scope="function")
def db_session() -> Session:
    """
    Isolated DB per test.

    A fresh in-memory SQLite database, so commit() inside the code under
    test needs no savepoint juggling.
    """
    engine = make_engine("sqlite+pysqlite://")
    Base.metadata.create_all(bind=engine)
    session = SessionLocal(bind=engine)
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def collections(db_session):
    for w in (SPRING, SUMMER, HOLIDAY, CORE):
        db_session.add(
            Collection(
                id=w.collection_id,
                name=w.name,
                ship_window_start=w.ship_window_start,
                ship_window_end=w.ship_window_end,
                active=True,
            )
        )
    db_session.commit()
    return SqlCollectionProvider(db_session)


@pytest.fixture
def client(db_session):
    from backend.app.main import app

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
