from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool
import logging

from codereview.infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

# Create Base instance
Base = declarative_base()

configured_url = settings.database_url


def build_engine(database_url: str) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    SQLite engines are created without pooling options and with
    check_same_thread disabled.
    """
    if database_url.startswith("sqlite:"):
        logger.info("Using SQLite database")
        return create_engine(
            database_url, connect_args={"check_same_thread": False}, pool_pre_ping=True
        )

    logger.info("Using pooled database engine")
    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_pre_ping=True,  # Verify connections before using them
        connect_args={"application_name": "codereview"},
    )


engine = build_engine(configured_url)

# Create SessionLocal class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def check_connection(bind: Engine = engine) -> bool:
    """Run a trivial query to verify the database is reachable."""
    try:
        with bind.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Successfully connected to the database")
        return True
    except Exception as e:
        logger.error(f"Error connecting to the database: {str(e)}")
        return False


def create_tables(bind: Engine = engine) -> bool:
    """
    Creates all tables defined in the models.
    Should be called when the application starts.

    Returns:
        bool: True if tables were created successfully, False otherwise
    """
    # Importing the models registers them on Base.metadata
    from codereview import models  # noqa: F401

    try:
        Base.metadata.create_all(bind=bind)
        logger.info("Database tables created successfully")
        return True
    except Exception as e:
        logger.error(f"Error creating database tables: {str(e)}")
        return False
