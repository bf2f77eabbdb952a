"""CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .config import load_config
from .dates import classify_expiry, expiring_within, resolve_voice_date
from .errors import TarubaskibasError
from .inventory import InventoryService, export_filename, export_items
from .models import ItemSource
from .storage import create_storage
from .vision import create_backend


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="tarubaskibas",
        description="Pantry tracker: scan products, speak expiry dates, watch what runs out",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to the config file (TOML)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    sub = parser.add_subparsers(dest="command")

    # list
    list_parser = sub.add_parser("list", help="Show the inventory, soonest expiry first")
    list_parser.add_argument("--json", action="store_true", help="Output JSON")
    list_parser.add_argument(
        "--within", type=int, default=None, metavar="DAYS",
        help="Only items expiring within DAYS days",
    )

    # add
    add_parser = sub.add_parser("add", help="Add an item by hand")
    add_parser.add_argument("name", type=str)
    add_parser.add_argument("date", type=str, help="YYYY-MM-DD, or spoken text with --voice")
    add_parser.add_argument("--qty", type=int, default=1)
    add_parser.add_argument(
        "--voice", action="store_true", help="Treat DATE as a spoken phrase"
    )

    # parse-date
    parse_parser = sub.add_parser("parse-date", help="Resolve a spoken date")
    parse_parser.add_argument("text", type=str, nargs="+")

    # scan
    scan_parser = sub.add_parser("scan", help="Read product name and expiry from photos")
    scan_parser.add_argument(
        "images", type=str, nargs="+", help="Label image then date image (one image with --quick)"
    )
    scan_parser.add_argument("--quick", action="store_true", help="Single-photo quick scan")
    scan_parser.add_argument("--save", action="store_true", help="Save the result")
    scan_parser.add_argument("--qty", type=int, default=1)

    # qty
    qty_parser = sub.add_parser("qty", help="Change an item's quantity")
    qty_parser.add_argument("id", type=str)
    qty_parser.add_argument("delta", type=int)

    # delete
    delete_parser = sub.add_parser("delete", help="Delete an item")
    delete_parser.add_argument("id", type=str)

    # export / import
    export_parser = sub.add_parser("export", help="Export the inventory as JSON")
    export_parser.add_argument("file", type=str, nargs="?", default=None)
    import_parser = sub.add_parser("import", help="Import items from a JSON export")
    import_parser.add_argument("file", type=str)

    # profile
    profile_parser = sub.add_parser("profile", help="Show or set the username")
    profile_parser.add_argument("--set", type=str, default=None, dest="username")

    # mode
    sub.add_parser("mode", help="Show which storage backend is in use")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    if args.command == "parse-date":
        print(resolve_voice_date(" ".join(args.text)))
        return

    load_dotenv()
    config = load_config(args.config)

    try:
        code = asyncio.run(_run(config, args))
    except (TarubaskibasError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    if code:
        sys.exit(code)


async def _run(config, args) -> int:
    storage = create_storage(config)
    try:
        user = await storage.sign_in()
        profile = await storage.get_user_profile(user.uid)
        service = InventoryService(storage, user, profile)

        match args.command:
            case "list":
                return await _cmd_list(service, args)
            case "add":
                return await _cmd_add(service, args)
            case "scan":
                return await _cmd_scan(service, config, args)
            case "qty":
                return await _cmd_qty(service, args)
            case "delete":
                await service.delete_item(args.id)
                print(f"Deleted {args.id}")
            case "export":
                return await _cmd_export(service, args)
            case "import":
                return await _cmd_import(service, args)
            case "profile":
                if args.username:
                    profile = await service.save_profile(args.username)
                    print(f"Profile saved as {profile.username}")
                else:
                    print(f"{service.profile.username} ({user.uid})")
            case "mode":
                print(storage.mode.value)
        return 0
    finally:
        await storage.aclose()


async def _cmd_list(service: InventoryService, args) -> int:
    items = await service.snapshot()
    if args.within is not None:
        items = expiring_within(items, args.within)

    if args.json:
        print(export_items(items))
        return 0

    if not items:
        print("The inventory is empty.")
        return 0
    print(f"Inventory ({len(items)} items):")
    for item in items:
        status = classify_expiry(item.expiry_date)
        print(
            f"  [{status.label:<18}] {item.expiry_date} "
            f"({status.days_left:>4}d)  {item.name} x{item.quantity}  <{item.id}>"
        )
    return 0


async def _cmd_add(service: InventoryService, args) -> int:
    if args.voice:
        item = await service.add_from_voice(args.name, args.date, args.qty)
    else:
        item = await service.add_item(args.name, args.date, args.qty)
    print(f"Added {item.name} x{item.quantity}, expires {item.expiry_date} <{item.id}>")
    return 0


async def _cmd_scan(service: InventoryService, config, args) -> int:
    backend = create_backend(config)
    print("Analyzing images...")
    analysis = await service.scan(backend, args.images, quick=args.quick)
    print(f"Product: {analysis.product_name}")
    print(f"Expires: {analysis.expiry_date}")

    if args.save:
        source = ItemSource.QUICK_SCAN if args.quick else ItemSource.AI
        item = await service.add_from_analysis(analysis, source=source, quantity=args.qty)
        print(f"Saved <{item.id}>")
    return 0


async def _cmd_qty(service: InventoryService, args) -> int:
    item = await service.find(args.id)
    if item is None:
        print(f"No item with id {args.id}", file=sys.stderr)
        return 1
    quantity = await service.change_quantity(item, args.delta)
    if quantity == 0:
        print(f"{item.name} used up and removed")
    else:
        print(f"{item.name} x{quantity}")
    return 0


async def _cmd_export(service: InventoryService, args) -> int:
    items = await service.snapshot()
    path = Path(args.file or export_filename())
    path.write_text(export_items(items), encoding="utf-8")
    print(f"Exported {len(items)} items to {path}")
    return 0


async def _cmd_import(service: InventoryService, args) -> int:
    try:
        records = json.loads(Path(args.file).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        print(f"Import failed: {e}", file=sys.stderr)
        return 1
    if not isinstance(records, list):
        print("Import failed: the file must contain a JSON array", file=sys.stderr)
        return 1
    count = await service.import_items(records)
    print(f"Imported {count} items.")
    return 0
