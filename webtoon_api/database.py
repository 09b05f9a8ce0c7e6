from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from webtoon_api.config import DATABASE_URL, DB_ECHO, DB_SCHEMA
from typing import AsyncGenerator

SCHEMA = DB_SCHEMA

engine = create_async_engine(
    DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://"),
    echo=DB_ECHO,
    future=True
)

AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
Base = declarative_base()


def table_args(*constraints):
    """__table_args__ carrying the configured schema after any constraints."""
    return (*constraints, {"schema": SCHEMA})


def fk(target: str) -> str:
    """Schema-qualified foreign key target, e.g. fk("webtoons.id")."""
    return f"{SCHEMA}.{target}" if SCHEMA else target


# Dependency for FastAPI routes
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session
