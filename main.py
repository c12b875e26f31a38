#!/usr/bin/env python3
"""CLI: python main.py import DUMP.json --instance NAME --account-id N --inbox-id N | python main.py check --account-id N."""
import argparse
import json
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)


def cmd_import(args: argparse.Namespace) -> int:
    from history_import.errors import ActingUserNotFound
    from history_import.service import HistoryImporter

    with open(args.dump, encoding="utf-8") as f:
        dump = json.load(f)

    importer = HistoryImporter()
    importer.stage_contacts(args.instance, dump.get("contacts") or [])
    n_contacts = importer.import_contacts(args.instance, args.account_id)
    print(f"Contacts imported: {n_contacts}")

    if args.skip_seen:
        n_seen = importer.seed_seen_message_ids(args.instance, args.account_id, args.inbox_id)
        print(f"Already imported message ids: {n_seen}")
    importer.stage_messages(args.instance, dump.get("messages") or [])
    try:
        n_messages = importer.import_messages(args.instance, args.account_id, args.inbox_id)
    except ActingUserNotFound as e:
        print(f"Message import aborted: {e}", file=sys.stderr)
        return 1
    print(f"Messages imported: {n_messages}")
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    from helpdesk.consistency import print_report, run_consistency_checks

    results = run_consistency_checks(args.account_id)
    print_report(results)
    return 1 if any(r.error_count for r in results) else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Helpdesk history import")
    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="Import a session history dump ({contacts, messages} JSON)")
    p_import.add_argument("dump", help="Path to the JSON dump")
    p_import.add_argument("--instance", required=True, help="Instance (tenant) name; also the provenance label")
    p_import.add_argument("--account-id", type=int, required=True)
    p_import.add_argument("--inbox-id", type=int, required=True)
    p_import.add_argument("--skip-seen", action="store_true", help="Skip messages already imported into the inbox")
    p_import.set_defaults(func=cmd_import)

    p_check = sub.add_parser("check", help="Read-only consistency checks for an account")
    p_check.add_argument("--account-id", type=int, required=True)
    p_check.set_defaults(func=cmd_check)

    args = parser.parse_args()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
