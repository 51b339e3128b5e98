from __future__ import annotations

from typing import Generator

from sqlalchemy.orm import Session

from backend.app.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    except Exception:
        # leave nothing half-written when an endpoint fails mid-transaction
        db.rollback()
        raise
    finally:
        db.close()
