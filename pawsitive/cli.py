"""Command-line interface for store maintenance."""

import argparse
import logging
from pathlib import Path
from typing import List, Optional

__all__ = ["main", "parse_args", "seed_blacklist", "analyze_all", "show_stats", "export_scans"]

from pawsitive.config import DB_PATH, DEFAULT_BLACKLIST
from pawsitive.db import (
    add_to_blacklist,
    export_scan_history,
    get_analytics,
    get_connection,
    init_db,
)
from pawsitive.errors import PawsitiveError
from pawsitive.intake import intake
from pawsitive.logging_config import setup_logging
from pawsitive.models import ScanPayload
from pawsitive.scoring import analyze_product, is_analysis_stale


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="PawsitiveCheck product store maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create tables and load the default ingredient blacklist
  python -m pawsitive.cli --init-db --seed-blacklist

  # Re-score every product against the current blacklist and recalls
  python -m pawsitive.cli --analyze all

  # Re-score only products not analysed recently
  python -m pawsitive.cli --analyze stale

  # Re-score one product
  python -m pawsitive.cli --analyze 42

  # Look up a barcode the same way the app does
  python -m pawsitive.cli --scan 012345678905 --user local-admin

  # Export one user's scan history to CSV
  python -m pawsitive.cli --export-scans user-123 --output data/scans.csv

  # Show database statistics
  python -m pawsitive.cli --stats
        """,
    )

    parser.add_argument(
        "--db",
        default=DB_PATH,
        help=f"SQLite database path (default: {DB_PATH})",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create tables if missing",
    )
    parser.add_argument(
        "--seed-blacklist",
        action="store_true",
        help="Add the default ingredient blacklist (existing entries are refreshed)",
    )
    parser.add_argument(
        "--analyze",
        metavar="PRODUCT_ID",
        help="Re-run safety analysis for a product id, 'stale', or 'all'",
    )
    parser.add_argument(
        "--scan",
        metavar="BARCODE",
        help="Run a barcode scan through the intake workflow",
    )
    parser.add_argument(
        "--user",
        default="cli",
        help="User id that owns --scan history records (default: cli)",
    )
    parser.add_argument(
        "--export-scans",
        metavar="USER_ID",
        help="Export a user's scan history to CSV",
    )
    parser.add_argument(
        "--output",
        default="data/scan_history.csv",
        help="Output CSV path for --export-scans (default: data/scan_history.csv)",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show database statistics and exit",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Debug logging",
    )

    return parser.parse_args(argv)


def seed_blacklist(db_path: str) -> int:
    """Load DEFAULT_BLACKLIST into the store. Returns number of entries written."""
    for entry in DEFAULT_BLACKLIST:
        add_to_blacklist(db_path, entry["ingredient_name"], entry["reason"], entry["severity"])
    return len(DEFAULT_BLACKLIST)


def analyze_all(db_path: str, only_stale: bool = False) -> int:
    """Re-score products. Returns number of products analysed.

    With ``only_stale``, products analysed within ANALYSIS_STALE_AFTER are skipped.
    """
    with get_connection(db_path) as conn:
        rows = conn.execute("SELECT id, last_analyzed FROM products ORDER BY id").fetchall()

    count = 0
    for row in rows:
        if only_stale and not is_analysis_stale(dict(row)):
            continue
        analyze_product(db_path, row["id"])
        count += 1
    return count


def show_stats(db_path: str) -> None:
    """Display database statistics."""
    init_db(db_path)
    stats = get_analytics(db_path)

    print(f"\n{'='*50}")
    print(f"Database: {db_path}")
    print(f"{'='*50}")
    print(f"\nProducts:               {stats['total_products']}")
    print(f"  blessed:              {stats['blessed_products']}")
    print(f"  cursed:               {stats['cursed_products']}")
    print(f"Users:                  {stats['total_users']}")
    print(f"Active recalls:         {stats['active_recalls']}")
    print(f"Blacklisted ingredients: {stats['blacklisted_ingredients']}")
    print(f"Scans recorded:         {stats['total_scans']}")
    print()


def export_scans(db_path: str, user_id: str, output: str) -> int:
    """Write a user's scan history to CSV. Returns number of rows."""
    df = export_scan_history(db_path, user_id)
    Path(output).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output, index=False)
    return len(df)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for CLI."""
    args = parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO, log_to_file=False)

    if args.stats:
        show_stats(args.db)
        return

    if args.init_db or args.seed_blacklist:
        init_db(args.db)
        print(f"Database ready: {args.db}")

    if args.seed_blacklist:
        count = seed_blacklist(args.db)
        print(f"Seeded {count} blacklist entries")

    if args.analyze:
        init_db(args.db)
        if args.analyze in ("all", "stale"):
            count = analyze_all(args.db, only_stale=(args.analyze == "stale"))
            print(f"Analyzed {count} products")
        else:
            try:
                product_id = int(args.analyze)
            except ValueError:
                raise SystemExit(f"--analyze expects a product id, 'stale' or 'all', got {args.analyze!r}")
            result = analyze_product(args.db, product_id)
            if result is None:
                raise SystemExit(f"Product {product_id} not found")
            _, analysis = result
            print(f"Product {product_id}: {analysis['cosmic_score']} ({analysis['cosmic_clarity']})")
            if analysis["suspicious_ingredients"]:
                print(f"  Suspicious: {', '.join(analysis['suspicious_ingredients'])}")

    if args.scan:
        init_db(args.db)
        try:
            result = intake(ScanPayload(kind="barcode", value=args.scan), args.user, args.db)
        except PawsitiveError as e:
            raise SystemExit(e.user_message)
        if result.resolved:
            print(f"{result.status}: {result.product.get('name')} ({result.product.get('brand')})")
            print(f"  Score {result.analysis['cosmic_score']} - {result.analysis['cosmic_clarity']}")
        else:
            print(result.message)

    if args.export_scans:
        init_db(args.db)
        count = export_scans(args.db, args.export_scans, args.output)
        print(f"Exported {count} scans to {args.output}")


if __name__ == "__main__":
    main()
