"""Seed the database with an example screening seat layout.

Run with the backend venv activated:
python scripts/seed_screening.py [screening_id]
"""
import sys

from cinebook.database import models  # noqa: F401
from cinebook.database.database import Base, SessionLocal, engine
from cinebook.services.catalog import InventoryCatalog

ROWS = "ABCDEFGH"
SEATS_PER_ROW = 12
PREMIUM_ROWS = {"G", "H"}
STANDARD_PRICE = 250
PREMIUM_PRICE = 400


def layout():
    for row in ROWS:
        premium = row in PREMIUM_ROWS
        for number in range(1, SEATS_PER_ROW + 1):
            yield {
                "row_label": row,
                "seat_number": number,
                "category": "premium" if premium else "standard",
                "unit_price": PREMIUM_PRICE if premium else STANDARD_PRICE,
            }


def seed(screening_id: str = "demo-screening") -> None:
    # ensure tables exist
    Base.metadata.create_all(bind=engine)
    added = InventoryCatalog(SessionLocal).register_screening(screening_id, layout())
    if added:
        print(f"Seeded {added} seat(s) for screening {screening_id}.")
    else:
        print(f"Screening {screening_id} already seeded; skipping.")


if __name__ == '__main__':
    seed(*sys.argv[1:2])
