import argparse
import json
import sys
from pathlib import Path

from loguru import logger

from app.core.config import get_settings
from app.db import init_db
from ingestion.service import import_markets


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bulk import market records from a JSON array")
    parser.add_argument(
        "path",
        nargs="?",
        default="-",
        help="Path to a JSON file holding an array of market rows ('-' reads stdin)",
    )
    return parser.parse_args()


def _load_rows(path: str) -> list:
    raw = sys.stdin.read() if path == "-" else Path(path).read_text(encoding="utf-8")
    rows = json.loads(raw)
    if not isinstance(rows, list):
        raise SystemExit("Input must be a JSON array")
    if not rows:
        raise SystemExit("Array cannot be empty")
    return rows


def main() -> None:
    args = parse_args()
    settings = get_settings()
    init_db()

    rows = _load_rows(args.path)
    summary = import_markets(rows, write_batch_limit=settings.sync_write_batch_limit)
    logger.info(
        "Import finished: {} imported, {} changed, {} skipped",
        summary.imported,
        summary.changed,
        summary.skipped,
    )


if __name__ == "__main__":
    main()
