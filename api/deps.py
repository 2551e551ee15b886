"""
Identity Reconciliation API - Dependencies
==========================================
Builds the contact store and linking engine once per process and hands them
to FastAPI endpoints.

The store backend comes from the configuration file named by
RECONCILE_CONFIG_PATH (default: config/app_config.yml).
"""

import logging
import threading
from typing import Generator, Optional

from reconcile.config import AppSettings, load_settings
from reconcile.linking.contact_store import ContactStore, InMemoryContactStore
from reconcile.linking.coordinator import KeyLockCoordinator
from reconcile.linking.engine import ContactLinkingEngine

logger = logging.getLogger(__name__)

# Global singletons
_settings: Optional[AppSettings] = None
_engine: Optional[ContactLinkingEngine] = None
_init_lock = threading.Lock()


def get_settings() -> AppSettings:
    global _settings
    if _settings is None:
        _settings = load_settings()
        logger.info(f"Settings loaded from {_settings.config_path}")
    return _settings


def build_store(settings: AppSettings) -> ContactStore:
    """Create the ContactStore selected by `store.backend`."""
    if settings.store.backend == 'memory':
        logger.warning("Using in-memory contact store; data is lost on restart")
        return InMemoryContactStore()

    # psycopg2 and SQLAlchemy load only when the postgres backend is selected
    from reconcile.db_utils import DatabaseManager
    from reconcile.linking.postgres_store import PostgresContactStore
    db_manager = DatabaseManager(settings.config_path)
    return PostgresContactStore(db_manager)


def get_engine_instance() -> ContactLinkingEngine:
    """
    Get or create the global ContactLinkingEngine.
    One engine (and one coordinator) per process so every request thread
    shares the same lock table.
    """
    global _engine
    if _engine is None:
        with _init_lock:
            if _engine is None:
                settings = get_settings()
                coordinator = KeyLockCoordinator(
                    lock_timeout_seconds=settings.identity.lock_timeout_seconds
                )
                _engine = ContactLinkingEngine(
                    store=build_store(settings),
                    coordinator=coordinator,
                    max_key_rounds=settings.identity.max_key_rounds,
                )
                logger.info(f"ContactLinkingEngine initialized ({settings.store.backend} store)")
    return _engine


def set_engine(engine: Optional[ContactLinkingEngine]) -> None:
    """Install a prebuilt engine (tests, embedding)."""
    global _engine
    _engine = engine


def get_engine() -> Generator[ContactLinkingEngine, None, None]:
    """
    FastAPI dependency that yields the shared engine.

    Usage in endpoints:
        @router.post("/identify")
        def identify(engine: ContactLinkingEngine = Depends(get_engine)):
            ...
    """
    engine = get_engine_instance()
    try:
        yield engine
    finally:
        # Don't close the store here - it's reused across requests
        pass


def shutdown_engine():
    """Close the contact store on app shutdown."""
    global _engine
    if _engine is not None:
        _engine.close()
        _engine = None
        logger.info("ContactLinkingEngine closed")
