"""Database connection and session management using SQLAlchemy async ORM"""
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from lessonbook.config import DATABASE_URL

# Create async SQLAlchemy engine with connection pooling
# pool_size=10: Keep 10 connections alive in the pool
# max_overflow=10: Allow 10 additional connections under load (total 20 max)
# pool_timeout=20: Seconds to wait for a pooled connection before failing
# pool_recycle=3600: Recycle connections every hour to prevent stale connections
engine = create_async_engine(
    DATABASE_URL,
    echo=False,  # Set to True for SQL query logging during development
    pool_size=10,
    max_overflow=10,
    pool_timeout=20,
    pool_recycle=3600,
    pool_pre_ping=True,  # Verify connection health before using
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Base class for declarative models
Base = declarative_base()
