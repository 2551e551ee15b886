#!/usr/bin/env python
"""
Identity Reconciliation - API Server Entrypoint
===============================================
Starts the Identity Reconciliation API using Uvicorn.

Usage:
    python scripts/run_api.py
    python scripts/run_api.py --port 8080
    python scripts/run_api.py --host 127.0.0.1 --port 8000 --reload

Environment Variables (a .env file in the working directory is honoured):
    RECONCILE_CONFIG_PATH: Path to app config (default: config/app_config.yml)
"""

import os
import sys
import argparse
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from reconcile.config import CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH, load_settings
from reconcile.logging_config import setup_logging_from_settings


def print_banner():
    """Print the application banner."""
    print()
    print("=" * 70)
    print("  Identity Reconciliation API")
    print("  Contact Linking Engine")
    print("=" * 70)
    print()


def main():
    """Main entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description='Identity Reconciliation API Server',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                           # Start on 0.0.0.0:8000
  %(prog)s --port 8080               # Start on port 8080
  %(prog)s --host 127.0.0.1          # Localhost only
  %(prog)s --reload                  # Auto-reload on code changes

Identity keys are locked per process, so run a single worker per database
unless every writer goes through one process.

API Documentation:
  Swagger UI: http://localhost:8000/docs
  ReDoc:      http://localhost:8000/redoc

Key Endpoints:
  POST /identify              - Resolve a customer identity
  GET  /api/v1/health         - Health check
  GET  /api/v1/meta/stats     - Contact statistics
        """
    )

    parser.add_argument(
        '--host',
        default='0.0.0.0',
        help='Host to bind to (default: 0.0.0.0)'
    )

    parser.add_argument(
        '--port',
        type=int,
        default=8000,
        help='Port to bind to (default: 8000)'
    )

    parser.add_argument(
        '--reload',
        action='store_true',
        help='Enable auto-reload for development'
    )

    parser.add_argument(
        '--config',
        default=os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH),
        help=f'Path to app config file (default: {DEFAULT_CONFIG_PATH})'
    )

    parser.add_argument(
        '--log-level',
        default='info',
        choices=['debug', 'info', 'warning', 'error'],
        help='Logging level (default: info)'
    )

    args = parser.parse_args()

    os.environ[CONFIG_ENV_VAR] = args.config

    if not Path(args.config).exists():
        print(f"ERROR: Config not found: {args.config}")
        sys.exit(1)

    settings = load_settings(args.config)
    setup_logging_from_settings(settings.logging)

    print_banner()
    print(f"  Host:       {args.host}")
    print(f"  Port:       {args.port}")
    print(f"  Reload:     {args.reload}")
    print(f"  Config:     {args.config}")
    print(f"  Log Level:  {args.log_level}")
    print()
    print(f"  API Docs:   http://{args.host if args.host != '0.0.0.0' else 'localhost'}:{args.port}/docs")
    print()
    print("=" * 70)
    print()

    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=1,
        log_level=args.log_level
    )


if __name__ == '__main__':
    main()
