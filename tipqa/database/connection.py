from typing import Any, Dict, Tuple

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


DEFAULT_DB_URL = "sqlite+aiosqlite:///./tipqa.db"


def create_session_factory(
    database_url: str = DEFAULT_DB_URL,
) -> Tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    engine_kwargs: Dict[str, Any] = {}
    if database_url.startswith("postgresql"):
        engine_kwargs["pool_pre_ping"] = True
        engine_kwargs["connect_args"] = {
            "server_settings": {
                "timezone": "UTC"  # Set session timezone to UTC for consistent display
            }
        }

    engine = create_async_engine(database_url, **engine_kwargs)
    session_factory = async_sessionmaker(
        engine,
        expire_on_commit=False,
        class_=AsyncSession,
    )
    return engine, session_factory
