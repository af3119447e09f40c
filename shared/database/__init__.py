"""
Database Module
===============

Async SQL client for the durable offer, escrow and settlement-task store.

Usage:
    from shared.database import PostgresClient, postgres_session

    async with postgres_session() as session:
        result = await session.execute(select(OfferModel))
        ...
"""

from shared.database.postgres import (
    Base,
    PostgresClient,
    UTCDateTime,
    get_postgres_session,
    postgres_session,
)


__all__ = [
    "get_postgres_session",
    "postgres_session",
    "PostgresClient",
    "Base",
    "UTCDateTime",
]
