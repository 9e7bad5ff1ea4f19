"""
Run one Checkfront -> store reconciliation pass from the shell.

    python run_sync.py                      # default lookback window
    python run_sync.py 2025-12-01 2025-12-31
"""
import sys
sys.path.insert(0, '.')

from datetime import date

from bookingsync.config import settings
from bookingsync.database import create_tables
from bookingsync.main import build_services
from bookingsync.services.sync_scheduler import LookbackWindow
from bookingsync.utils.logging_config import setup_logging


def main():
    setup_logging(level=settings.log_level, json_format=False, include_uvicorn=False)

    if not settings.has_checkfront_config:
        print("Checkfront credentials are not configured (CHECKFRONT_HOST / CONSUMER_KEY / CONSUMER_SECRET)")
        return 1

    create_tables()
    services = build_services()
    scheduler = services["sync_scheduler"]

    window = None
    if len(sys.argv) == 3:
        window = LookbackWindow(date.fromisoformat(sys.argv[1]), date.fromisoformat(sys.argv[2]))

    print("=" * 50)
    print("Running booking reconciliation...")
    print("=" * 50)

    report = scheduler.run_reconciliation(window)

    print(f"\nWindow:   {report.window.start} -> {report.window.end}")
    print(f"Store:    {services['store'].name}")
    print(f"Fetched:  {report.external_count} Checkfront / {report.local_count} local")
    print(f"Gaps:     {len(report.gaps)}")
    print(f"  ✅ Filled: {len(report.filled)}")
    print(f"  ❌ Failed: {len(report.failed)}")
    for code, error in report.failed.items():
        print(f"     {code}: {error}")

    if not report.success:
        print(f"\nRun failed: {report.error}")
        return 1
    return 0 if not report.failed else 2


if __name__ == "__main__":
    sys.exit(main())
