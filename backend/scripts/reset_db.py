#!/usr/bin/env python3
"""Clear checkout holds (default) or every table (--all). Restart the backend afterwards for a fresh scheduler.
Run from backend: python scripts/reset_db.py [--all]
"""
import argparse
import sys
from pathlib import Path

# Ensure backend is on path when run as script
backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.db.session import SessionLocal
from app.services.admin_service import clear_transient, reset_all


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--all", action="store_true", help="delete bookings, slots, schedules and offerings too")
    args = parser.parse_args()
    db = SessionLocal()
    try:
        deleted = reset_all(db) if args.all else clear_transient(db)
        print("Database cleared. Rows deleted:")
        for table, count in deleted.items():
            print(f"  {table}: {count}")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
