"""
Script to run one ingestion pass outside the API, without the queue
"""

import argparse
import asyncio
import json
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import async_session_maker, engine
from core.exceptions import IngestionException
from core.logging import setup_logging
from ingestion.extractors.horizon import HorizonClient
from ingestion.extractors.soroban_rpc import SorobanRpcClient
from ingestion.orchestrator import IngestionOrchestrator

logger = logging.getLogger(__name__)

MODES = ("events", "operations", "comprehensive", "backfill")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run one ingestion pass")
    parser.add_argument("mode", choices=MODES)
    parser.add_argument("--start-ledger", type=int, default=None)
    parser.add_argument("--end-ledger", type=int, default=None)
    parser.add_argument(
        "--contract-id",
        action="append",
        dest="contract_ids",
        help="Contract to ingest (repeatable); defaults to CONTRACT_IDS"
    )
    parser.add_argument("--exclude-failed", action="store_true", help="Skip operations of failed transactions")
    return parser.parse_args(argv)


async def run_ingest(args) -> int:
    rpc = SorobanRpcClient(settings.soroban_rpc_url, timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
    horizon = HorizonClient(settings.horizon_base_url, timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
    orchestrator = IngestionOrchestrator(
        async_session_maker, rpc, horizon, args.contract_ids or settings.contract_ids, settings=settings
    )

    try:
        if args.mode == "events":
            report = await orchestrator.fetch_events(args.start_ledger, args.end_ledger)
        elif args.mode == "operations":
            report = await orchestrator.fetch_contract_operations(
                None, args.start_ledger, args.end_ledger, include_failed_tx=not args.exclude_failed
            )
        elif args.mode == "comprehensive":
            report = await orchestrator.fetch_comprehensive(
                args.start_ledger, args.end_ledger, include_failed_tx=not args.exclude_failed
            )
        else:
            report = await orchestrator.backfill(args.start_ledger, args.end_ledger)

        print(json.dumps(report.to_dict(), indent=2, default=str))
        return 0

    except IngestionException as e:
        logger.error(f"Ingestion failed: {e}")
        return 1
    finally:
        await rpc.close()
        await horizon.close()
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(run_ingest(parse_args())))
