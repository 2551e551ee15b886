"""
Identity Reconciliation - Database Setup Script
Creates database and applies the contacts schema

Usage:
    python scripts/setup_database.py

    Or with custom config:
    python scripts/setup_database.py --config config/app_config.yml
"""

import sys
import argparse
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from reconcile.db_utils import DatabaseManager, create_database_if_not_exists, apply_schema
from reconcile.logging_config import setup_logging, get_logger


def main():
    """Setup database and apply schema"""

    parser = argparse.ArgumentParser(description='Identity Reconciliation Database Setup')
    parser.add_argument(
        '--config',
        default='config/app_config.yml',
        help='Path to config YAML'
    )
    parser.add_argument(
        '--schema',
        default='db/schema.sql',
        help='Path to schema SQL file'
    )

    args = parser.parse_args()

    setup_logging(log_level='INFO')
    logger = get_logger(__name__)

    logger.info("=" * 80)
    logger.info("Identity Reconciliation - Database Setup")
    logger.info("=" * 80)

    try:
        logger.info("Step 1: Creating database if not exists...")
        create_database_if_not_exists(args.config)

        logger.info(f"Step 2: Applying schema from {args.schema}...")
        apply_schema(args.config, args.schema)

        logger.info("Step 3: Verifying contacts table...")
        db_manager = DatabaseManager(args.config)
        try:
            if not db_manager.table_exists('contacts'):
                raise RuntimeError("contacts table missing after schema apply")
        finally:
            db_manager.close()

        logger.info("=" * 80)
        logger.info("✓ Database setup completed successfully!")
        logger.info("=" * 80)

        return 0

    except Exception as e:
        logger.error(f"✗ Database setup failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
