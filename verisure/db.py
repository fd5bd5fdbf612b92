from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, StaticPool
from verisure.config import get_settings

Base = declarative_base()


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    if url.startswith("sqlite"):
        # One shared connection, otherwise every session sees a fresh in-memory database
        return create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        poolclass=NullPool,
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


settings = get_settings()
engine = build_engine(settings.DATABASE_URL, echo=settings.SQLALCHEMY_ECHO)
async_session_maker = build_session_maker(engine)


async def get_session() -> AsyncSession:
    async with async_session_maker() as session:
        yield session

async def ping_db(session: AsyncSession) -> bool:
    await session.execute(text("SELECT 1"))
    return True

async def create_tables(bind: AsyncEngine):
    # models must be imported so their tables are registered on Base.metadata
    import verisure.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def init_db():
    await create_tables(engine)

async def close_db():
    await engine.dispose()
