"""
Database utilities for the Identity Reconciliation service
Provides configuration loading, connection pooling and schema helpers
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List
from contextlib import contextmanager
from urllib.parse import quote_plus
import psycopg2
from psycopg2 import pool
from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_NAME = "identity_reconciliation"


class DatabaseConfig:
    """Database configuration loader"""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load database configuration from YAML"""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            config = yaml.safe_load(f) or {}

        if 'database' not in config:
            raise KeyError(f"No 'database' section in {self.config_path}")

        return config['database']

    def get_connection_string(self) -> str:
        """Build PostgreSQL connection string"""
        user = quote_plus(str(self.config['user']))
        password = quote_plus(str(self.config.get('password') or ''))
        host = self.config['host']
        port = self.config['port']
        database = self.config['database']
        return f"postgresql://{user}:{password}@{host}:{port}/{database}"

    def get_psycopg2_params(self) -> Dict[str, Any]:
        """Get parameters for psycopg2 connection"""
        return {
            'host': self.config['host'],
            'port': self.config['port'],
            'database': self.config['database'],
            'user': self.config['user'],
            'password': self.config.get('password')
        }

    def get_pool_bounds(self) -> tuple:
        """(minconn, maxconn) for the psycopg2 pool"""
        return (
            int(self.config.get('minconn', 1)),
            int(self.config.get('maxconn', 10))
        )


class DatabaseManager:
    """
    Manages database connections
    psycopg2 pool for the contact store, SQLAlchemy engine for health checks
    """

    def __init__(self, config_path: str):
        self.config = DatabaseConfig(config_path)
        self._engine: Optional[Engine] = None
        self._connection_pool: Optional[pool.ThreadedConnectionPool] = None

    def get_engine(self) -> Engine:
        """Get SQLAlchemy engine (lazy initialization)"""
        if self._engine is None:
            connection_string = self.config.get_connection_string()
            self._engine = create_engine(
                connection_string,
                pool_pre_ping=True,
                pool_size=2,
                max_overflow=2,
                echo=False
            )
            logger.info("SQLAlchemy engine initialized")
        return self._engine

    def get_connection_pool(self) -> pool.ThreadedConnectionPool:
        """Get psycopg2 connection pool (shared across request threads)"""
        if self._connection_pool is None:
            params = self.config.get_psycopg2_params()
            minconn, maxconn = self.config.get_pool_bounds()
            self._connection_pool = pool.ThreadedConnectionPool(
                minconn=minconn,
                maxconn=maxconn,
                **params
            )
            logger.info(f"psycopg2 connection pool initialized ({minconn}-{maxconn})")
        return self._connection_pool

    @contextmanager
    def get_connection(self):
        """Context manager for psycopg2 connection from pool; commits on success"""
        conn_pool = self.get_connection_pool()
        conn = conn_pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            conn_pool.putconn(conn)

    @contextmanager
    def get_cursor(self, cursor_factory=None):
        """Context manager for database cursor"""
        with self.get_connection() as conn:
            cursor = conn.cursor(cursor_factory=cursor_factory)
            try:
                yield cursor
            finally:
                cursor.close()

    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[tuple]:
        """Execute SELECT query and return results"""
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            return cursor.fetchall()

    def check_health(self) -> bool:
        """Run SELECT 1 through the SQLAlchemy engine"""
        try:
            with self.get_engine().connect() as conn:
                return conn.execute(text("SELECT 1")).scalar() == 1
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def table_exists(self, table_name: str) -> bool:
        """Check if table exists"""
        query = """
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_name = %s
            );
        """
        result = self.execute_query(query, (table_name,))
        return result[0][0] if result else False

    def close(self):
        """Close all connections"""
        if self._connection_pool:
            self._connection_pool.closeall()
            self._connection_pool = None
            logger.info("Connection pool closed")
        if self._engine:
            self._engine.dispose()
            self._engine = None
            logger.info("SQLAlchemy engine disposed")


def create_database_if_not_exists(config_path: str, db_name: Optional[str] = None) -> None:
    """
    Create database if it doesn't exist
    Connects to 'postgres' database to create target database
    """
    config = DatabaseConfig(config_path)
    params = config.get_psycopg2_params()
    db_name = db_name or params['database'] or DEFAULT_DATABASE_NAME

    # Connect to default 'postgres' database
    params['database'] = 'postgres'

    try:
        conn = psycopg2.connect(**params)
        conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
        cursor = conn.cursor()

        cursor.execute(
            "SELECT 1 FROM pg_database WHERE datname = %s;",
            (db_name,)
        )
        exists = cursor.fetchone()

        if not exists:
            cursor.execute(f'CREATE DATABASE "{db_name}";')
            logger.info(f"Database '{db_name}' created successfully")
        else:
            logger.info(f"Database '{db_name}' already exists")

        cursor.close()
        conn.close()

    except Exception as e:
        logger.error(f"Error creating database: {e}")
        raise


def apply_schema(config_path: str, schema_file: str) -> None:
    """
    Apply database schema from SQL file

    Args:
        config_path: Path to config YAML
        schema_file: Path to SQL schema file
    """
    schema_path = Path(schema_file)

    if not schema_path.exists():
        raise FileNotFoundError(f"Schema file not found: {schema_file}")

    with open(schema_path, 'r', encoding='utf-8') as f:
        schema_sql = f.read()

    config = DatabaseConfig(config_path)
    params = config.get_psycopg2_params()

    conn = psycopg2.connect(**params)
    conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)

    try:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
        logger.info(f"Schema applied from {schema_file}")
    except (psycopg2.errors.DuplicateTable, psycopg2.errors.DuplicateObject) as e:
        # Re-runs against an existing schema are fine
        logger.warning(f"Schema objects already exist (this is normal): {e}")
    except Exception as e:
        logger.error(f"Error applying schema: {e}")
        raise
    finally:
        conn.close()
