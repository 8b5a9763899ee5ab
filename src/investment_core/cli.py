"""Command-line interface for maintenance tasks.

Provides subcommands: `indexes`, `backfill-slugs`, `reconcile` and
`analytics`. Each command is implemented as a `cmd_*` function that accepts
an argparse namespace and the application context.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable

from dotenv import load_dotenv

from investment_core.config import get_settings
from investment_core.context import AppContext, build_context
from investment_core.db import PRODUCTS, ensure_indexes
from investment_core.errors import InvestmentError
from investment_core.funding.reconcile import reconcile_funding_counters
from investment_core.logging_config import configure_logging
from investment_core.slugs import backfill_slugs

log = logging.getLogger(__name__)


# --------------------------------------------------
# Commands
# --------------------------------------------------
def cmd_indexes(_: argparse.Namespace, ctx: AppContext) -> int:
    """Create the product and pledge indexes."""
    ensure_indexes(ctx.db)
    return 0


def cmd_backfill_slugs(_: argparse.Namespace, ctx: AppContext) -> int:
    """Assign slugs to legacy products stored without one."""
    updated = backfill_slugs(ctx.db[PRODUCTS])
    if updated:
        ctx.cache.invalidate_all()
    print(json.dumps({"updated": updated}))
    return 0


def cmd_reconcile(args: argparse.Namespace, ctx: AppContext) -> int:
    """Audit stored funding counters; exit 1 when drift remains uncorrected."""
    report = reconcile_funding_counters(ctx.db, apply=args.apply)
    if report.corrected:
        ctx.cache.invalidate_all()
    print(
        json.dumps(
            {
                "productsChecked": report.products_checked,
                "drifted": report.drifted,
                "corrected": report.corrected,
            },
            indent=2,
        )
    )
    return 1 if report.drifted and not args.apply else 0


def cmd_analytics(_: argparse.Namespace, ctx: AppContext) -> int:
    """Print platform-wide funding analytics as JSON."""
    analytics = ctx.aggregator.compute_global_analytics()
    print(json.dumps(analytics, indent=2, default=str))
    return 0


COMMANDS: dict[str, Callable[[argparse.Namespace, AppContext], int]] = {
    "indexes": cmd_indexes,
    "backfill-slugs": cmd_backfill_slugs,
    "reconcile": cmd_reconcile,
    "analytics": cmd_analytics,
}


# --------------------------------------------------
# CLI
# --------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    """Build and return the top-level argument parser for the CLI."""
    p = argparse.ArgumentParser(prog="investment-core")
    p.add_argument("--log-file", type=Path, default=None)
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("indexes", help="create collection indexes")
    sub.add_parser("backfill-slugs", help="assign slugs to products missing one")

    p_rec = sub.add_parser("reconcile", help="audit denormalized funding counters")
    p_rec.add_argument("--apply", action="store_true", help="rewrite drifted counters")

    sub.add_parser("analytics", help="print global funding analytics")
    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entry point: parse args, configure logging and dispatch commands."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    settings = get_settings()
    configure_logging(args.log_file, settings.log_level)

    ctx = build_context(settings)
    try:
        return COMMANDS[args.cmd](args, ctx)
    except InvestmentError as e:
        log.error("%s failed: %s", args.cmd, e.message)
        print(json.dumps(e.to_response()), file=sys.stderr)
        return 2
    finally:
        ctx.client.close()


if __name__ == "__main__":
    raise SystemExit(main())
