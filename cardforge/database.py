from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from cardforge.config import get_settings
from cardforge.models import Base


def make_sessionmaker(url: str, echo: bool = False) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Engine plus session factory for *url* (echo=True logs SQL)."""
    db_engine = create_async_engine(url, echo=echo)
    factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )
    return db_engine, factory


async def init_models(db_engine: AsyncEngine) -> None:
    """Create any missing tables."""
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


settings = get_settings()

engine, AsyncSessionLocal = make_sessionmaker(settings.database_url)
