#!/usr/bin/env python
"""
Identity Reconciliation - Identify CLI
======================================
Runs a single identify call against the configured contact store and prints
the consolidated contact as JSON.

Usage:
    python scripts/run_identify.py --email doc@hillvalley.edu
    python scripts/run_identify.py --email doc@hillvalley.edu --phone 555-0102
    python scripts/run_identify.py --memory --email a@x.com --phone 111
"""

import sys
import json
import argparse
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from reconcile.config import DEFAULT_CONFIG_PATH, load_settings
from reconcile.db_utils import DatabaseManager
from reconcile.logging_config import setup_logging, get_logger
from reconcile.linking.contact_store import InMemoryContactStore
from reconcile.linking.coordinator import KeyLockCoordinator
from reconcile.linking.engine import ContactLinkingEngine
from reconcile.linking.errors import IdentityError
from reconcile.linking.models import Observation
from reconcile.linking.normalization import normalize_email, normalize_phone


def build_engine(args) -> ContactLinkingEngine:
    if args.memory:
        return ContactLinkingEngine(InMemoryContactStore())

    from reconcile.linking.postgres_store import PostgresContactStore

    settings = load_settings(args.config)
    store = PostgresContactStore(DatabaseManager(args.config))
    return ContactLinkingEngine(
        store,
        coordinator=KeyLockCoordinator(settings.identity.lock_timeout_seconds),
        max_key_rounds=settings.identity.max_key_rounds,
    )


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Identity Reconciliation: identify one customer',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exit codes:
  0  identity resolved
  1  identify failed (error code printed)
  2  invalid arguments
        """
    )
    parser.add_argument('--email', help='Customer email address')
    parser.add_argument('--phone', help='Customer phone number')
    parser.add_argument(
        '--config',
        default=DEFAULT_CONFIG_PATH,
        help=f'Path to app config file (default: {DEFAULT_CONFIG_PATH})'
    )
    parser.add_argument(
        '--memory',
        action='store_true',
        help='Use a throwaway in-memory store instead of PostgreSQL'
    )
    parser.add_argument(
        '--log-level',
        default='WARNING',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging verbosity level (default: WARNING)'
    )

    args = parser.parse_args()

    setup_logging(log_level=args.log_level)
    logger = get_logger(__name__)

    observation = Observation(
        email=normalize_email(args.email),
        phone_number=normalize_phone(args.phone),
    )
    if observation.is_empty:
        print("Error: provide --email and/or --phone")
        sys.exit(2)

    engine = build_engine(args)
    try:
        view = engine.identify(observation)
    except IdentityError as e:
        logger.error(f"Identify failed: {e.message}")
        print(f"ERROR [{e.code}]: {e.message}")
        sys.exit(1)
    finally:
        engine.close()

    print(json.dumps({'contact': view.to_dict()}, indent=2))
    sys.exit(0)


if __name__ == '__main__':
    main()
