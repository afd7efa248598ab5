#!/usr/bin/env python3
"""
ckptstash CLI - Main Application Entry Point
Keeps a model catalog in sync between a host directory and a stash
"""

import sys
import sqlite3
import argparse
from typing import List, Tuple

from commands import AppContext, Commands
from config import ConfigManager
from errors import StashError
from logger import LogStore


def parse_order(values: List[str]) -> List[Tuple[str, int]]:
    """FILENAME=ORDER pairs"""
    orders = []
    for value in values:
        filename, sep, order = value.rpartition('=')
        if not sep or not filename:
            raise argparse.ArgumentTypeError(f"Expected FILENAME=ORDER, got {value!r}")
        try:
            orders.append((filename, int(order)))
        except ValueError:
            raise argparse.ArgumentTypeError(f"Order must be an integer: {value!r}")
    return orders


def print_report(report):
    print(f"Status: {report.status}")
    print(f"  Copied: {report.copied_count}, up to date: {report.skipped_count}, "
          f"failed: {report.failed_count}")
    print(f"  Manifests mirrored: {report.manifests_copied}")
    print(f"  New models: host {report.host_scan.imported_count}, "
          f"stash {report.stash_scan.imported_count}")
    print(f"  New relationships: {report.relationships_added}")
    for error in report.errors:
        print(f"  ✗ {error}")
    for warning in report.warnings:
        print(f"  ⚠ {warning}")


def cmd_list(commands: Commands, args):
    listings = commands.list_models(args.kind)
    if not listings:
        print("No models in catalog")
        return
    for listing in listings:
        model = listing.model
        order = model.host_display_order if model.host_display_order is not None else '-'
        where = ('H' if listing.is_on_host else '-') + ('S' if model.exists_stash else '-')
        name = f"  ({model.display_name})" if model.display_name else ""
        print(f"{str(order):>4}  {where}  {model.kind:<13} {model.filename}{name}")
    print(f"Total: {len(listings)} models")


def cmd_show(commands: Commands, args):
    model = commands.db.require_model(args.filename)
    print(f"Filename:     {model.filename}")
    print(f"Display name: {model.display_name or '-'}")
    print(f"Kind:         {model.kind} ({model.kind_source})")
    print(f"Size:         {model.file_size if model.file_size is not None else '-'}")
    print(f"Checksum:     {model.checksum or '-'}")
    print(f"Source:       {model.source_path or '-'}")
    print(f"On host:      {'yes' if model.exists_host else 'no'}")
    print(f"In stash:     {'yes' if model.exists_stash else 'no'}")
    if model.strength is not None:
        print(f"Strength:     {model.strength_value}")
    for edge in commands.get_relationships(model.filename):
        print(f"Uses:         {edge.child_filename}")
    for edge in commands.get_parents(model.filename):
        print(f"Used by:      {edge.parent_filename}")


def cmd_status(commands: Commands, args):
    status = commands.get_initialization_status()
    paths = commands.get_paths()
    print(f"Host:   {paths['host_dir'] or '(not configured)'}")
    print(f"Stash:  {paths['stash_dir'] or '(not configured)'}")
    print(f"Status: {status['status']}")
    print(f"Stash exists: {'yes' if status['stash_exists'] else 'no'}")
    print(f"Models: {commands.db.get_model_count()}")
    for error in status['errors']:
        print(f"  ✗ {error}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="ckptstash - model catalog and host/stash sync",
        prog="ckptstash"
    )
    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Configuration file path (default: config.yaml)"
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Do not echo log messages"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="ckptstash 0.1.0"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Set host and stash directories and run the first sync")
    p.add_argument("host_dir")
    p.add_argument("stash_dir")

    sub.add_parser("sync", help="Copy new or changed files from host to stash and rescan")

    p = sub.add_parser("scan", help="Rescan host and stash without copying")
    p.add_argument("--kind", help="Only scan models of this kind")

    p = sub.add_parser("list", help="List cataloged models")
    p.add_argument("--kind", help="Only list models of this kind")

    p = sub.add_parser("show", help="Show one model and its relationships")
    p.add_argument("filename")

    p = sub.add_parser("copy", help="Copy a model into the stash")
    p.add_argument("filename")

    p = sub.add_parser("delete", help="Remove a model from the catalog")
    p.add_argument("filename")
    p.add_argument("--keep-files", action="store_true", help="Leave files on disk")

    p = sub.add_parser("reorder", help="Set host display order")
    p.add_argument("orders", nargs="+", metavar="FILENAME=ORDER")

    p = sub.add_parser("visible", help="Show or hide a model on the host")
    p.add_argument("filename")
    p.add_argument("--hide", action="store_true")
    p.add_argument("--order", type=int)

    sub.add_parser("status", help="Show configured paths and last sync status")

    return parser


def run_command(commands: Commands, args) -> int:
    cmd = args.command

    if cmd in ("init", "sync"):
        if cmd == "init":
            future = commands.initialize(args.host_dir, args.stash_dir)
        else:
            future = commands.sync()
        report = future.result()
        print_report(report)
        return 0 if report.ok else 1

    if cmd == "scan":
        result = commands.scan(args.kind)
        print(f"✓ Scanned {result.scanned_count} files, imported {result.imported_count}")
        for error in result.errors:
            print(f"  ✗ {error}")
        return 0 if not result.errors else 1

    if cmd == "list":
        cmd_list(commands, args)
    elif cmd == "show":
        cmd_show(commands, args)
    elif cmd == "copy":
        destination = commands.copy_to_stash(args.filename)
        print(f"✓ Copied to {destination}")
    elif cmd == "delete":
        deleted = commands.delete(args.filename, delete_files=not args.keep_files)
        print(f"✓ Deleted {args.filename} ({len(deleted)} files removed)")
    elif cmd == "reorder":
        commands.reorder(parse_order(args.orders))
        print("✓ Order updated")
    elif cmd == "visible":
        commands.set_host_visibility(args.filename, not args.hide, args.order)
        print(f"✓ {args.filename} {'hidden' if args.hide else 'visible'} on host")
    elif cmd == "status":
        cmd_status(commands, args)
    return 0


def main():
    """Main application entry point"""
    parser = build_parser()
    args = parser.parse_args()

    try:
        config_manager = ConfigManager(args.config)
        config = config_manager.load_config()
        log = LogStore(config.log_retention, echo=not args.quiet)

        with AppContext(config_manager, log=log) as ctx:
            exit_code = run_command(Commands(ctx), args)
        sys.exit(exit_code)

    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except (StashError, ValueError) as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        sys.exit(1)
    except sqlite3.Error as e:
        print(f"✗ Database error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
