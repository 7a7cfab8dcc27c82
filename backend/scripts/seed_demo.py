#!/usr/bin/env python3
"""
Create a demo offering with a dinner service period and materialize its slots.
Run from backend: python scripts/seed_demo.py [--host-id HOST] [--tables]
"""
import argparse
import sys
from datetime import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.core.constants import CAPACITY_MODE_SIMPLE, CAPACITY_MODE_TABLE_BASED
from app.db.session import SessionLocal, create_all
from app.models.dining_table import DiningTable
from app.models.offering import Offering
from app.services.allocation.engine import build_engine
from app.services.schedule_service import create_schedule_definition

DEMO_SLUG = "demo-bistro"


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--host-id", default="demo-host")
    parser.add_argument("--tables", action="store_true", help="table_based capacity with 2/2/4/4/6 seat tables")
    args = parser.parse_args()

    create_all()
    db = SessionLocal()
    try:
        offering = db.query(Offering).filter(Offering.slug == DEMO_SLUG).first()
        if offering:
            print(f"Offering {DEMO_SLUG} already exists (id={offering.id})")
            return
        offering = Offering(
            host_id=args.host_id,
            name="Demo Bistro",
            slug=DEMO_SLUG,
            base_price_cents=2500,
            capacity_mode=CAPACITY_MODE_TABLE_BASED if args.tables else CAPACITY_MODE_SIMPLE,
            min_party_size=1,
            max_party_size=8,
        )
        db.add(offering)
        db.commit()
        if args.tables:
            for i, seats in enumerate((2, 2, 4, 4, 6), start=1):
                db.add(DiningTable(offering_id=offering.id, table_number=f"T{i}", capacity=seats))
            db.commit()
        create_schedule_definition(
            db,
            args.host_id,
            offering.id,
            {
                "name": "Dinner",
                "kind": "service_period",
                "max_per_slot": 20,
                "days_of_week": [1, 2, 3, 4, 5],
                "start_time": time(17, 30),
                "end_time": time(22, 0),
                "last_seating": time(21, 0),
                "interval_minutes": 30,
            },
        )
        print(f"Created offering {DEMO_SLUG} (id={offering.id}) for host {args.host_id}")
    finally:
        db.close()
    print(build_engine().materialize_upcoming_slots())


if __name__ == "__main__":
    main()
