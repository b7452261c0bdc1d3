"""
Database schema initialization for twikoo-backup.

Creates missing tables on start-up without requiring Alembic.
"""

import logging
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError
from twikoo_backup import db

logger = logging.getLogger(__name__)


def init_database_schema(app):
    """
    Create any tables that do not exist yet.

    Safe to call from several Gunicorn workers at once: a worker that loses
    the race to create a table logs it and carries on.
    """
    with app.app_context():
        inspector = inspect(db.engine)
        existing_tables = set(inspector.get_table_names())
        wanted_tables = set(db.metadata.tables)
        missing = sorted(wanted_tables - existing_tables)

        if not missing:
            logger.debug("Database schema up to date")
            return

        logger.info(f"Creating missing tables: {', '.join(missing)}")
        try:
            db.create_all()
            logger.info("Database schema created successfully")
        except OperationalError as e:
            # Another worker created the tables between inspection and creation
            logger.warning(f"Schema creation raced with another process: {e}")
