#!/usr/bin/env python3
"""
Seed the local refund registry sheet from a JSON file (scripts/sample_refunds.json by default).
Each entry becomes one row laid out the way the registry sheet stores refunds.

Usage:
    python scripts/seed_refunds.py --file scripts/sample_refunds.json [--reset]
"""
import argparse
import json
import os
import sys

from opsdesk.adapters.sheets_sql import SqlSheetBackend
from opsdesk.config import settings
from opsdesk.db import SessionLocal, init_db
from opsdesk.repositories import refund_repo as cols

DEFAULT_SOURCE = os.path.join(os.path.dirname(__file__), "sample_refunds.json")

STATUS_TO_LABEL = {"IN_PROGRESS": "EN_PROCESO", "COMPLETED": "COMPLETADO"}


def build_row(entry: dict) -> list:
    """Return the cell list for one refund entry."""
    cells = [""] * (cols.COL_RECEIPT_URL + 1)
    cells[cols.COL_ORDER] = entry.get("order_id", "")
    cells[cols.COL_TAX_ID] = entry.get("tax_id", "CF")
    cells[cols.COL_TAX_NAME] = entry.get("customer_name", "")
    cells[cols.COL_DATE] = entry.get("date", "")
    address = entry.get("address", "")
    cells[cols.COL_ADDRESS] = json.dumps(address, ensure_ascii=False) if isinstance(address, dict) else address
    cells[cols.COL_PHONE] = entry.get("phone", "")
    cells[cols.COL_ORDER_GID] = entry.get("order_gid", "")
    cells[cols.COL_ORDER_LINE_ITEMS] = json.dumps(entry.get("order_line_items", []), ensure_ascii=False)
    status = entry.get("status", "IN_PROGRESS")
    cells[cols.COL_STATUS] = STATUS_TO_LABEL.get(status, status)
    cells[cols.COL_REFUND_ITEMS] = json.dumps(entry.get("line_items", []), ensure_ascii=False)
    cells[cols.COL_REFUND_AMOUNT] = str(entry.get("refund_amount", 0))
    cells[cols.COL_REFUND_STARTED] = entry.get("refund_started_at", "")
    cells[cols.COL_EXTRA_DATA] = json.dumps(entry.get("extra_data", {}), ensure_ascii=False)
    return cells


def seed_from_file(path: str, reset: bool = False):
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except ValueError as e:
            raise RuntimeError(f"Failed to parse JSON from {path}: {e}")

    entries = data.get("items", []) if isinstance(data, dict) else data
    init_db(reset=reset)
    backend = SqlSheetBackend(SessionLocal)
    created = []
    for entry in entries:
        created.append(backend.append_row(settings.REFUNDS_SHEET_NAME, build_row(entry)))
    print(f"Seeded {len(created)} refund rows into {settings.REFUNDS_SHEET_NAME}: {created}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--file", "-f", default=DEFAULT_SOURCE, help="Path to a JSON list of refund entries")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate tables first")
    args = parser.parse_args()
    if not os.path.exists(args.file):
        print("File not found:", args.file)
        sys.exit(1)
    seed_from_file(args.file, reset=args.reset)
