import logging
from contextlib import contextmanager

import psycopg2
import psycopg2.extras
from psycopg2.extensions import ISOLATION_LEVEL_SERIALIZABLE

from .. import config

logger = logging.getLogger(__name__)


def get_db_connection(autocommit=True):
    if config.DATABASE_URL:
        conn = psycopg2.connect(config.DATABASE_URL)
        conn.autocommit = autocommit
        return conn
    conn = psycopg2.connect(
        dbname=config.DB_NAME,
        user=config.DB_USER,
        password=config.DB_PASSWORD,
        host=config.DB_HOST,
        port=config.DB_PORT
    )
    conn.autocommit = autocommit
    return conn


def get_db_cursor():
    try:
        conn = get_db_connection()
        return conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
    except Exception as e:
        logger.error("Database connection error: %s", e)
        raise


def close_cursor(cursor):
    """Close a cursor from get_db_cursor() together with its connection."""
    try:
        cursor.close()
    finally:
        try:
            cursor.connection.close()
        except Exception:
            logger.debug("connection already closed")


@contextmanager
def serializable_cursor():
    """Yield a RealDictCursor inside one SERIALIZABLE transaction.

    Commits when the block exits cleanly, rolls back on any exception. The
    commit itself can raise a serialization failure, so callers must treat
    the whole ``with`` statement as the unit that can fail.
    """
    conn = get_db_connection(autocommit=False)
    conn.set_session(isolation_level=ISOLATION_LEVEL_SERIALIZABLE)
    cursor = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
    try:
        yield cursor
        conn.commit()
    except Exception:
        try:
            conn.rollback()
        except Exception:
            logger.exception("rollback failed")
        raise
    finally:
        try:
            cursor.close()
        finally:
            conn.close()
