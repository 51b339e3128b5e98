from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select

from backend.app.db.session import SessionLocal
from backend.app.db.models.models_v1 import Collection

logger = logging.getLogger(__name__)

SAMPLE_COLLECTIONS = [
    ("Spring 2026", date(2026, 3, 1), date(2026, 4, 30)),
    ("Summer 2026", date(2026, 5, 15), date(2026, 7, 15)),
    ("Holiday 2026", date(2026, 10, 1), date(2026, 11, 30)),
    # open collection: no ship window yet
    ("Core Basics", None, None),
]


def run_seed():
    db = SessionLocal()
    try:
        created = 0
        for name, start, end in SAMPLE_COLLECTIONS:
            c = db.scalar(select(Collection).where(Collection.name == name))
            if not c:
                db.add(Collection(name=name, ship_window_start=start, ship_window_end=end, active=True))
                created += 1
        db.commit()
        logger.info("seed ok: %d collection(s) created", created)
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_seed()
