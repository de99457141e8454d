"""Flip every stale decision and prediction to expired."""
from __future__ import annotations

import argparse
import logging
from pathlib import Path

from ..service import EngineService


def sweep(path: Path) -> dict:
    service = EngineService(path)
    try:
        return service.sweep_expired()
    finally:
        service.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Expire overdue decisions and predictions")
    parser.add_argument("db", type=Path, help="Path to SQLite database")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log each transition")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    counts = sweep(args.db)
    print(f"Expired {counts['decisions']} decisions and {counts['predictions']} predictions in {args.db}")


if __name__ == "__main__":  # pragma: no cover - CLI tool
    main()
