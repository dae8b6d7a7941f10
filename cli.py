#!/usr/bin/env python3
"""
Mega OCR — Command Line Interface
Run business card extraction and inspect API usage from a terminal.

Usage:
    python cli.py extract card_front.jpg --back card_back.jpg --requester emp-42
    python cli.py extract card_front.png --requester emp-42 --json
    python cli.py stats --days 7
    python cli.py stats --requester emp-42
    python cli.py limits --requester emp-42
    python cli.py health
    python cli.py init-db
"""
import argparse
import json
import logging
import shutil
import sys
import tempfile
from pathlib import Path

from config.settings import config
from models.api_usage import UsageLedger, ensure_tables
from tools.cards.health import check_provider_health
from tools.cards.models import BACK, FRONT, CardImage
from tools.cards.pipeline import build_pipeline
from tools.cards.rate_limit import RateLimiter
from tools.cards.usage import get_usage_statistics, get_user_usage_stats


def setup_logging(debug: bool = False):
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def stage_upload(source: str, side: str, workdir: Path) -> CardImage:
    """Copy a user file into the temp upload dir; the pipeline deletes what it gets."""
    src = Path(source)
    if not src.is_file():
        raise FileNotFoundError(f"No such image: {source}")
    dest = workdir / f"{side}{src.suffix.lower()}"
    shutil.copyfile(src, dest)
    image = CardImage.from_path(dest, side=side)
    image.filename = src.name
    return image


def print_result(result):
    print("\n" + "=" * 60)
    print("BUSINESS CARD EXTRACTION")
    print("=" * 60)

    if not result.success:
        print(f"\n❌ [{result.status}] {result.message}")
        if result.suggestion:
            print(f"   {result.suggestion}")
        if result.raw_text:
            print("\n--- RAW TEXT (for manual entry) ---")
            print(result.raw_text.get("combined", ""))
        return

    card = result.data
    print(f"\nCompany:   {card.company_name}  [{result.confidence.company_name}]")
    if card.business_type:
        print(f"Business:  {card.business_type}")
    print(f"Type:      {card.client_type}  [{result.confidence.client_type}]")
    addr = card.address
    parts = [p for p in (addr.street, addr.city, addr.state, addr.pincode, addr.country) if p]
    if parts:
        print(f"Address:   {', '.join(parts)}  [{result.confidence.address}]")
    if card.company_website:
        print(f"Website:   {card.company_website}")
    if card.products:
        print(f"Products:  {', '.join(card.products)}")

    print("\n--- CONTACTS ---")
    for person in card.contact_persons:
        marker = "*" if person.is_primary else " "
        print(f"{marker} {person.name or '(unnamed)'} {person.designation}".rstrip())
        if person.phone:
            print(f"    phone: {person.phone}")
        if person.email:
            print(f"    email: {person.email}")

    for notice in result.notices:
        print(f"\n⚠️  {notice}")

    if result.warnings:
        print("\n--- POSSIBLE DUPLICATES ---")
        for warning in result.warnings:
            icon = "🔴" if warning.severity == "high" else "🟡"
            print(f"{icon} {warning.message}")
        print("Saving this client requires explicit confirmation.")

    print(f"\n--- {result.processing_time_ms}ms ---")


def cmd_extract(args):
    """Extract one business card (front + optional back)."""
    pipeline = build_pipeline(args.provider)
    with tempfile.TemporaryDirectory(prefix="mega-card-") as workdir:
        workdir = Path(workdir)
        try:
            front = stage_upload(args.front, FRONT, workdir)
            back = stage_upload(args.back, BACK, workdir) if args.back else None
        except FileNotFoundError as e:
            print(f"❌ {e}", file=sys.stderr)
            return 2
        result = pipeline.extract_business_card(front, back, requester_id=args.requester)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print_result(result)
    return 0 if result.success else 1


def cmd_stats(args):
    """Show monthly API usage (or one requester's usage)."""
    ledger = UsageLedger()
    if args.requester:
        stats = get_user_usage_stats(ledger, args.requester, days=args.days)
    else:
        stats = get_usage_statistics(ledger, days=args.days)

    if stats is None:
        print("❌ Usage statistics unavailable (database unreachable?)", file=sys.stderr)
        return 1
    print(json.dumps(stats, indent=2, default=str))
    return 0


def cmd_limits(args):
    """Show the current rate-limit windows for a requester."""
    decision = RateLimiter(UsageLedger()).check_all_limits(args.requester)
    icon = "✅" if decision.allowed else "⛔"
    print(f"{icon} {args.requester}: {'allowed' if decision.allowed else decision.reason}")
    print(f"   Monthly: {decision.monthly.message}")
    print(f"   Hourly:  {decision.hourly.message}")
    return 0


def cmd_health(args):
    """Check OCR and parsing provider configuration."""
    generator = None
    if args.live:
        from tools.cards.card_parser import ClaudeTextGenerator
        generator = ClaudeTextGenerator()
    health = check_provider_health(generator)

    print("Mega OCR — Provider Health")
    print("=" * 40)
    for name, api in health["apis"].items():
        ok = api["status"] in ("configured", "healthy")
        print(f"{'✅' if ok else '❌'} {name}: {api['status']}")
        if api.get("error"):
            print(f"   {api['error']}")
    print(f"\nOCR provider: {config.card_ocr.ocr_provider}")
    print(f"Overall: {health['overall']}")
    return 0 if health["overall"] == "healthy" else 1


def cmd_init_db(args):
    """Create the api_usage table."""
    ensure_tables()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Mega OCR — Business card intelligence")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    # extract command
    extract_parser = subparsers.add_parser("extract", help="Extract a business card")
    extract_parser.add_argument("front", type=str, help="Front image (JPG/PNG)")
    extract_parser.add_argument("--back", type=str, help="Back image (JPG/PNG)")
    extract_parser.add_argument("--requester", type=str, required=True, help="Requester id")
    extract_parser.add_argument("--provider", type=str, choices=["google", "claude"],
                                help="Override OCR_PROVIDER")
    extract_parser.add_argument("--json", action="store_true", help="Print the raw result as JSON")

    # stats command
    stats_parser = subparsers.add_parser("stats", help="Show API usage statistics")
    stats_parser.add_argument("--requester", type=str, help="Limit to one requester")
    stats_parser.add_argument("--days", type=int, default=30, help="Look-back window in days")

    # limits command
    limits_parser = subparsers.add_parser("limits", help="Show rate-limit state for a requester")
    limits_parser.add_argument("--requester", type=str, required=True, help="Requester id")

    # health command
    health_parser = subparsers.add_parser("health", help="Check provider configuration")
    health_parser.add_argument("--live", action="store_true", help="Also make one live parsing call")

    # init-db command
    subparsers.add_parser("init-db", help="Create database tables")

    args = parser.parse_args()
    setup_logging(args.debug or config.debug)

    commands = {
        "extract": cmd_extract,
        "stats": cmd_stats,
        "limits": cmd_limits,
        "health": cmd_health,
        "init-db": cmd_init_db,
    }
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return
    sys.exit(command(args))


if __name__ == "__main__":
    main()
