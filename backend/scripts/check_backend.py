#!/usr/bin/env python3
"""
Quick checks so the backend can start. Run from backend/:
  python scripts/check_backend.py
"""
import os
import sys
from pathlib import Path

# Run from backend/
backend_dir = Path(__file__).resolve().parent.parent
os.chdir(backend_dir)
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))


def main():
    errors = []
    warnings = []

    env_file = backend_dir / ".env"
    if not env_file.exists():
        errors.append("backend/.env missing. Copy from backend/.env.example and set DATABASE_URL, VAPID keys, etc.")
    else:
        print("OK  .env exists")

    try:
        from sqlalchemy import inspect, text

        from homebase_notify.db.session import engine
        from homebase_notify.db.tables import ALL_TABLE_NAMES

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("OK  Database connection (DATABASE_URL)")
        missing = sorted(set(ALL_TABLE_NAMES) - set(inspect(engine).get_table_names()))
        if missing:
            errors.append(f"Missing tables {missing}. Run: alembic upgrade head")
        else:
            print("OK  All tables present")
    except Exception as e:
        errors.append(f"Database: {e}")
        print("FAIL Database:", e)

    try:
        from homebase_notify.config import settings

        if not settings.vapid_configured:
            warnings.append("VAPID_PUBLIC_KEY / VAPID_PRIVATE_KEY not set: push deliveries will fail")
        if not settings.email_configured:
            warnings.append("RESEND_API_KEY or SMTP_USER/SMTP_PASSWORD not set: email deliveries will fail")
        if not settings.service_role_key:
            warnings.append("SERVICE_ROLE_KEY not set: only X-User-Role: admin can call admin routes")
    except Exception as e:
        errors.append(f"Settings: {e}")

    try:
        from homebase_notify.main import app  # noqa: F401

        print("OK  App import (homebase_notify.main)")
    except Exception as e:
        errors.append(f"App import: {e}")
        print("FAIL App import:", e)

    for w in warnings:
        print("WARN", w)

    if errors:
        print("\n---")
        for e in errors:
            print("•", e)
        return 1

    print("\nAll checks passed. Start with: uvicorn homebase_notify.main:app --reload --port 8000")
    return 0


if __name__ == "__main__":
    sys.exit(main())
