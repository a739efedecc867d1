"""
Database engine and session management
"""
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.engine import make_url

from core.config import settings
from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """Make sure the database URL uses an async driver"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"Unsupported database driver: {drivername}. Use an async driver or update database.url")

    async_driver = driver_map[drivername]
    return str(url.set(drivername=async_driver))


engine = create_async_engine(
    _build_async_url(settings.database.url),
    echo=settings.database.echo,
    future=True
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def create_tables():
    """Create every table known to the models package"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
