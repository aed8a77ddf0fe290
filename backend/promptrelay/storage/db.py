from __future__ import annotations

import json

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine


def _json_serializer(value) -> str:
    return json.dumps(value, default=str)


def create_db_engine(database_url: str) -> AsyncEngine:
    """Create shared async SQLAlchemy engine for app storage modules."""
    options = {"future": True, "json_serializer": _json_serializer}
    if not database_url.startswith("sqlite"):
        options["pool_pre_ping"] = True
    return create_async_engine(database_url, **options)
