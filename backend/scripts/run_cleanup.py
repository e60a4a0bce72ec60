"""Run one server cleanup sweep against the configured database.

Usage (from repository root):
    python backend/scripts/run_cleanup.py

Usage (from backend directory):
    python scripts/run_cleanup.py --retention-days 14
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Make `app` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.services.deletion_jobs import run_server_cleanup_job


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Sweep orphaned, expired and stale soft-deleted messages.")
    parser.add_argument("--skip-orphaned", action="store_true", help="Keep messages of missing conversations.")
    parser.add_argument("--skip-auto-delete", action="store_true", help="Do not sweep expired disappearing messages.")
    parser.add_argument("--skip-soft-deleted", action="store_true", help="Keep soft-deleted messages.")
    parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Soft-delete retention in days (default: SOFT_DELETE_RETENTION_DAYS setting).",
    )
    return parser.parse_args()


def main() -> None:
    """Run the sweep and print the per-category counts."""

    args = parse_args()
    result = run_server_cleanup_job(
        delete_orphaned=not args.skip_orphaned,
        delete_expired_auto_delete=not args.skip_auto_delete,
        delete_old_soft_deleted=not args.skip_soft_deleted,
        soft_delete_retention_days=args.retention_days,
    )

    print("Cleanup complete")
    print(f"orphaned={result.results.orphaned}")
    print(f"expired_auto_delete={result.results.expired_auto_delete}")
    print(f"old_soft_deleted={result.results.old_soft_deleted}")
    print(f"total={result.deleted_count}")
    for warning in result.warnings:
        print(f"warning: {warning}")


if __name__ == "__main__":
    main()
