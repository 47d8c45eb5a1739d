#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from iva_ledger.correlatives import set_sales_correlatives
from iva_ledger.errors import LedgerError
from iva_ledger.reports import period_summary
from iva_ledger.storage import DEFAULT_DATA_FILE, JsonFileStorage
from iva_ledger.store import LedgerStore
from iva_ledger.transfer import (
    export_backup,
    export_json,
    export_template,
    import_backup_text,
    import_bulk_text,
)


def _env(name: str) -> str | None:
    value = os.getenv(name)
    return value.strip() if value else None


def _write_output(text: str, output: str | None) -> None:
    if output:
        # BOM so spreadsheet tools detect UTF-8
        Path(output).write_text(text, encoding="utf-8-sig")
        print(f"Wrote {output}", file=sys.stderr)
    else:
        print(text)


def _read_input(path: str) -> str:
    return Path(path).read_text(encoding="utf-8-sig")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="IVA ledger maintenance (El Salvador).")
    parser.add_argument(
        "--data-file",
        default=_env("IVA_LEDGER_DATA_FILE") or DEFAULT_DATA_FILE,
        help=f"Ledger JSON file, default {DEFAULT_DATA_FILE}",
    )
    parser.add_argument("--output", help="Write exports to this file instead of stdout")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("export-backup", help="Tabular backup of every collection")
    sub.add_parser("export-json", help="JSON snapshot")
    template = sub.add_parser("export-template", help="Bulk-load template")
    template.add_argument("--no-examples", action="store_true", help="Headers only")

    bulk = sub.add_parser("import-bulk", help="Add records from a filled template")
    bulk.add_argument("file")
    backup = sub.add_parser("import-backup", help="Replace all data from a JSON or tabular backup")
    backup.add_argument("file")

    correlatives = sub.add_parser("set-correlatives", help="Override the next CCF/CF numbers")
    correlatives.add_argument("--ccf", type=int, help="Next CCF number")
    correlatives.add_argument("--cf", type=int, help="Next CF number")

    summary = sub.add_parser("summary", help="Monthly IVA summary")
    summary.add_argument("--year", type=int, required=True)
    summary.add_argument("--month", type=int, required=True)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        store = LedgerStore(JsonFileStorage(args.data_file))
        if args.command == "export-backup":
            _write_output(export_backup(store), args.output)
        elif args.command == "export-json":
            _write_output(export_json(store), args.output)
        elif args.command == "export-template":
            _write_output(export_template(include_examples=not args.no_examples), args.output)
        elif args.command == "import-bulk":
            counts = import_bulk_text(store, _read_input(args.file))
            print(json.dumps(counts, indent=2))
        elif args.command == "import-backup":
            import_backup_text(store, _read_input(args.file))
            print("Backup restored")
        elif args.command == "set-correlatives":
            if args.ccf is None and args.cf is None:
                raise SystemExit("Give --ccf and/or --cf")
            print(json.dumps(set_sales_correlatives(store, args.ccf, args.cf), indent=2))
        elif args.command == "summary":
            print(json.dumps(period_summary(store, args.year, args.month).to_wire(), indent=2))
    except LedgerError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
