#!/usr/bin/env python3
"""
Database Initialization Script
==============================

Create the offer, escrow and settlement-task tables and check that the
deployment has what the verifier and campaign catalog need.

Usage:
    python scripts/init_database.py
    python scripts/init_database.py --check-keys
    python scripts/init_database.py --campaigns campaigns.json

Version: 0.1.0
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.logging import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False, service_name="init-db")
logger = get_logger(__name__)


async def init_tables() -> bool:
    """Create all offer-service tables."""
    # Registers the ORM models on Base.metadata
    import services.offers.models  # noqa: F401
    from shared.database.postgres import PostgresClient

    logger.info("Creating tables...")

    try:
        await PostgresClient.create_tables()
        health = await PostgresClient.health_check()
        logger.info("database_ready", **health)
        return health.get("status") == "healthy"

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        return False

    finally:
        await PostgresClient.close()


def check_verification_keys() -> bool:
    """Make sure every registered circuit has a verification key on disk."""
    from shared.zk import VerificationKeyNotFoundError, VerificationKeyStore, default_registry

    store = VerificationKeyStore()
    missing = []
    for name in default_registry.list_circuits():
        spec = default_registry.lookup(name)
        try:
            store.load(spec.verification_key_name)
        except VerificationKeyNotFoundError:
            missing.append(name)

    if missing:
        logger.error("verification_keys_missing", circuits=missing, keys_dir=str(store.keys_dir))
        return False

    logger.info("verification_keys_present", circuits=default_registry.list_circuits())
    return True


def check_campaigns(path: Path) -> bool:
    """Validate a campaign catalog file."""
    from pydantic import ValidationError

    from services.offers.services.campaigns import StaticCampaignCatalog

    try:
        StaticCampaignCatalog.from_file(path)
        return True
    except (OSError, ValueError, ValidationError) as e:
        logger.error(f"Campaign file {path} is invalid: {e}")
        return False


async def main(args: argparse.Namespace) -> int:
    """Main initialization function."""
    logger.info("=" * 60)
    logger.info("PAYATTN Database Initialization")
    logger.info("=" * 60)

    results = {"Tables": await init_tables()}

    if args.check_keys:
        results["Verification keys"] = check_verification_keys()

    if args.campaigns:
        results["Campaigns"] = check_campaigns(args.campaigns)

    # Summary
    failed = [name for name, ok in results.items() if not ok]
    for name, ok in results.items():
        logger.info(f"  {name}: {'OK' if ok else 'FAILED'}")

    if failed:
        logger.error(f"Failed: {', '.join(failed)}")
        return 1

    logger.info("Initialization complete")
    return 0


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Initialize the PayAttn offer database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--check-keys",
        action="store_true",
        help="Fail if any circuit is missing its verification key",
    )
    parser.add_argument(
        "--campaigns",
        type=Path,
        default=None,
        help="Validate a campaign catalog JSON file",
    )

    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    exit_code = asyncio.run(main(args))
    sys.exit(exit_code)
