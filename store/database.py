# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Database engine and session factory for the Internal Schedule Store
"""
import logging
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import config
from store.tables import Base

logger = logging.getLogger(__name__)

IN_MEMORY_URLS = ('sqlite://', 'sqlite:///:memory:')


def create_db_engine(database_url: Optional[str] = None, **kwargs):
    """Create a SQLAlchemy engine; in-memory SQLite shares one connection across threads"""
    url = database_url or config.DATABASE_URL
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)

    if url.startswith('sqlite'):
        kwargs.setdefault('connect_args', {'check_same_thread': False})
        if url in IN_MEMORY_URLS:
            kwargs.setdefault('poolclass', StaticPool)
    else:
        kwargs.setdefault('pool_pre_ping', True)

    engine = create_engine(url, echo=False, **kwargs)
    driver = url.split(':', 1)[0] if ':' in url else 'unknown'
    logger.info(f"✅ Database engine created (driver={driver})")
    return engine


def create_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_tables(engine):
    """Create tables if they don't exist; safe to call repeatedly"""
    Base.metadata.create_all(engine)
