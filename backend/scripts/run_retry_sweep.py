#!/usr/bin/env python3
"""Run one notification retry sweep now (same as the scheduled job / admin retry button).
Run from backend: python scripts/run_retry_sweep.py [notification_id]
"""
import sys
from pathlib import Path

# Ensure backend is on path when run as script
backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from homebase_notify.db.session import SessionLocal
from homebase_notify.services.retry_worker import run_retry_sweep


def main():
    notification_id = int(sys.argv[1]) if len(sys.argv) > 1 else None
    db = SessionLocal()
    try:
        result = run_retry_sweep(db, notification_id=notification_id)
        print(f"Processed {result['processed']}: {result['succeeded']} sent, {result['failed']} failed")
    except Exception as e:
        db.rollback()
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
