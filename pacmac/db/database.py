import ssl

from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from pacmac.core.config import Environment, Settings, config


def database_url(settings: Settings = config) -> URL:
    return URL.create(
        drivername="postgresql+asyncpg",
        username=settings.db_user,
        password=settings.db_password,
        host=settings.db_host,
        port=settings.db_port,
        database=settings.db_name,
    )


def build_engine(url: URL | str, **kwargs) -> AsyncEngine:
    """
    Creates the async engine for ``url``. Extra keyword arguments go straight
    to ``create_async_engine``. Production connections are upgraded to TLS.
    """
    connect_args = dict(kwargs.pop("connect_args", {}))
    if config.render_env == Environment.PRODUCTION:
        connect_args.setdefault("ssl", ssl.create_default_context())
    return create_async_engine(
        url,
        echo=config.db_echo,
        connect_args=connect_args,
        **kwargs,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # objects remain available after committing a transaction
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(database_url(), pool_pre_ping=True)
async_session = build_session_factory(engine)


def load_models():
    # registers every table model on SQLModel.metadata
    from pacmac.models import (  # noqa: F401
        auction_timer_model,
        bid_model,
        dispute_model,
        listing_model,
        transaction_model,
        user_model,
    )


async def init_db(target: AsyncEngine = engine) -> None:
    """Creates any missing tables on ``target``."""
    load_models()
    async with target.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
