"""Payout settlement command line interface.

Usage:
    python -m payout_engine.cli preview --period 2025-11 --rate 50
    python -m payout_engine.cli commit --period 2025-11 --rate 50 --actor-id ops
    python -m payout_engine.cli payouts --period 2025-11
    python -m payout_engine.cli init-db

Results are printed as JSON. Exit codes: 0 success, 1 some farmers failed,
2 invalid period or rate.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Callable, TextIO
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payout_engine.api.schemas import PayoutResponse, PreviewResponse, ProcessPayoutsResponse
from payout_engine.calculators import Period, parse_rate
from payout_engine.config import Settings, get_settings
from payout_engine.database import create_schema, dispose_db, init_db
from payout_engine.events import AsyncEventEmitter
from payout_engine.exceptions import InvalidPeriod, InvalidRate
from payout_engine.services import (
    NotificationDispatcher,
    SettlementOrchestrator,
    build_sms_gateway,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_USAGE = 2


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


class PayoutCli:
    """Payout settlement CLI."""

    def __init__(
        self,
        settings: Settings | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.stdout = stdout or sys.stdout
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m payout_engine.cli",
            description="Monthly payout settlement tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        preview = subparsers.add_parser(
            "preview",
            help="Compute payouts for a period without writing anything",
        )
        preview.add_argument("--period", required=True, help="Period as YYYY-MM")
        preview.add_argument("--rate", required=True, help="Rate per liter")

        commit = subparsers.add_parser(
            "commit",
            help="Commit payouts for a period",
        )
        commit.add_argument("--period", required=True, help="Period as YYYY-MM")
        commit.add_argument("--rate", required=True, help="Rate per liter")
        commit.add_argument(
            "--actor-id",
            type=str,
            help="Operator recorded on emitted events",
        )

        payouts = subparsers.add_parser(
            "payouts",
            help="List stored payout records",
        )
        payouts.add_argument("--period", help="Filter by period (YYYY-MM)")
        payouts.add_argument("--farmer-id", type=parse_uuid, help="Filter by farmer")
        payouts.add_argument(
            "--limit",
            type=int,
            default=200,
            help="Maximum records to list (default: 200)",
        )

        subparsers.add_parser(
            "init-db",
            help="Create database tables (local setups)",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return EXIT_FAILURES

        handlers: dict[str, Callable[[argparse.Namespace], Any]] = {
            "preview": self._cmd_preview,
            "commit": self._cmd_commit,
            "payouts": self._cmd_payouts,
            "init-db": self._cmd_init_db,
        }

        try:
            return asyncio.run(self._run_handler(handlers[parsed.command], parsed))
        except (InvalidPeriod, InvalidRate) as e:
            print(f"error: {e}", file=sys.stderr)
            return EXIT_USAGE

    async def _run_handler(
        self, handler: Callable[[argparse.Namespace], Any], args: argparse.Namespace
    ) -> int:
        owns_engine = self.session_factory is None
        try:
            return await handler(args)
        finally:
            if owns_engine:
                await dispose_db()

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self.session_factory is not None:
            return self.session_factory
        _, factory = init_db()
        return factory

    def _orchestrator(self) -> SettlementOrchestrator:
        factory = self._factory()
        emitter = AsyncEventEmitter()
        NotificationDispatcher(factory, build_sms_gateway(self.settings)).register(emitter)
        return SettlementOrchestrator(factory, emitter=emitter, settings=self.settings)

    def _emit(self, payload: dict[str, Any]) -> None:
        json.dump(payload, self.stdout, indent=2, default=str)
        self.stdout.write("\n")

    async def _cmd_preview(self, args: argparse.Namespace) -> int:
        """Preview a period."""
        period = Period.parse(args.period)
        rate = parse_rate(args.rate)
        report = await self._orchestrator().preview(period, rate)
        self._emit(PreviewResponse.from_report(report).model_dump(mode="json", by_alias=True))
        return EXIT_FAILURES if report.failed else EXIT_OK

    async def _cmd_commit(self, args: argparse.Namespace) -> int:
        """Commit a period."""
        period = Period.parse(args.period)
        rate = parse_rate(args.rate)
        orchestrator = self._orchestrator()
        report = await orchestrator.commit(period, rate, actor_id=args.actor_id)
        # Notifications run in the background; let them finish before exit
        await orchestrator.emitter.drain()
        self._emit(
            ProcessPayoutsResponse.from_report(report).model_dump(mode="json", by_alias=True)
        )
        return EXIT_FAILURES if report.failed else EXIT_OK

    async def _cmd_payouts(self, args: argparse.Namespace) -> int:
        """List payout records."""
        payouts = await self._orchestrator().list_payouts(
            args.period, args.farmer_id, args.limit
        )
        self._emit(
            {
                "items": [
                    PayoutResponse.model_validate(p).model_dump(mode="json", by_alias=True)
                    for p in payouts
                ],
                "total": len(payouts),
            }
        )
        return EXIT_OK

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create tables."""
        if self.session_factory is not None:
            engine = self.session_factory.kw["bind"]
        else:
            engine, _ = init_db()
        await create_schema(engine)
        logger.info("Database schema created")
        return EXIT_OK


def main(args: list[str] | None = None) -> int:
    """CLI entry point."""
    settings = get_settings()
    configure_logging(settings.log_level)
    return PayoutCli(settings).run(args)


if __name__ == "__main__":
    sys.exit(main())
