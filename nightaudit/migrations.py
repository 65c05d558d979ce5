from __future__ import annotations

import os
from sqlalchemy import text


def run_auto_migrations(engine) -> None:
    """
    Idempotent Postgres schema additions that `create_all()` cannot make.

    `create_all()` creates missing tables but never adds columns or indexes to
    tables that already exist (e.g. `bookings`/`folios` owned by the club's
    booking and POS modules). Gated behind `AUTO_MIGRATE=1`.
    """

    if str(os.getenv("AUTO_MIGRATE", "")).strip() not in {"1", "true", "TRUE", "yes", "YES"}:
        return

    dialect = getattr(getattr(engine, "dialect", None), "name", "") or ""
    if dialect not in {"postgresql", "postgres"}:
        return

    statements: list[str] = [
        # ----------------------------
        # Enum extensions (booking_status)
        # ----------------------------
        """
        DO $$
        BEGIN
          IF EXISTS (SELECT 1 FROM pg_type WHERE typname = 'booking_status') THEN
            IF NOT EXISTS (
              SELECT 1
              FROM pg_enum e
              JOIN pg_type t ON t.oid = e.enumtypid
              WHERE t.typname = 'booking_status' AND e.enumlabel = 'no_show'
            ) THEN
              ALTER TYPE booking_status ADD VALUE 'no_show';
            END IF;
          END IF;
        END $$;
        """,
        # ----------------------------
        # Columns the aggregator reads from shared tables
        # ----------------------------
        "ALTER TABLE users ADD COLUMN IF NOT EXISTS club_id text NULL;",
        "ALTER TABLE bookings ADD COLUMN IF NOT EXISTS folio_id integer NULL;",
        "ALTER TABLE bookings ADD COLUMN IF NOT EXISTS order_no text NULL;",
        "ALTER TABLE bookings ADD COLUMN IF NOT EXISTS updated_at timestamp NULL;",
        "ALTER TABLE folio_charges ADD COLUMN IF NOT EXISTS status text NULL DEFAULT 'posted';",
        "ALTER TABLE folio_payments ADD COLUMN IF NOT EXISTS status text NULL DEFAULT 'success';",
        "ALTER TABLE dining_orders ADD COLUMN IF NOT EXISTS settled_at timestamp NULL;",
        "ALTER TABLE daily_close_reports ADD COLUMN IF NOT EXISTS charge_count integer NULL DEFAULT 0;",
        "ALTER TABLE daily_close_reports ADD COLUMN IF NOT EXISTS open_folio_count integer NULL DEFAULT 0;",
        "ALTER TABLE daily_close_reports ADD COLUMN IF NOT EXISTS open_folio_balance double precision NULL DEFAULT 0;",
        "ALTER TABLE daily_close_reports ADD COLUMN IF NOT EXISTS cash_declared double precision NULL;",
        "ALTER TABLE daily_close_reports ADD COLUMN IF NOT EXISTS cash_variance double precision NULL;",
        # ----------------------------
        # One report / one claim per club and date
        # ----------------------------
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_daily_close_club_date_idx
          ON daily_close_reports (club_id, close_date);
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_daily_close_claim_club_date_idx
          ON daily_close_claims (club_id, close_date);
        """,
        # ----------------------------
        # Window scans
        # ----------------------------
        "CREATE INDEX IF NOT EXISTS ix_folio_payments_club_created ON folio_payments (club_id, created_at);",
        "CREATE INDEX IF NOT EXISTS ix_folio_charges_club_created ON folio_charges (club_id, created_at);",
        "CREATE INDEX IF NOT EXISTS ix_dining_orders_club_settled ON dining_orders (club_id, settled_at);",
        # ----------------------------
        # Supabase hardening (PostgREST exposure)
        # ----------------------------
        # Server-side connection only; RLS without policies denies PostgREST access.
        "ALTER TABLE IF EXISTS public.daily_close_reports ENABLE ROW LEVEL SECURITY;",
        "ALTER TABLE IF EXISTS public.daily_close_claims ENABLE ROW LEVEL SECURITY;",
        "ALTER TABLE IF EXISTS public.audit_logs ENABLE ROW LEVEL SECURITY;",
        "ALTER TABLE IF EXISTS public.roles ENABLE ROW LEVEL SECURITY;",
    ]

    with engine.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt))
