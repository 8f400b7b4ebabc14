"""
数据库配置和连接管理
"""
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from core.config import settings
from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
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
        raise ValueError(f"不支持的数据库驱动: {drivername}. 请使用 async 驱动或更新 DATABASE__URL")

    async_driver = driver_map[drivername]
    return url.set(drivername=async_driver).render_as_string(hide_password=False)


def enable_sqlite_transactions(engine: AsyncEngine) -> None:
    """让 SQLite 的事务与 SAVEPOINT 按预期工作。

    驱动默认延迟发出 BEGIN，导致最外层 SAVEPOINT 的 RELEASE 直接提交事务；
    这里关闭驱动的隐式事务，改为显式 BEGIN IMMEDIATE（同时串行化写事务）。
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):  # noqa: ARG001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_from_url(database_url: str, *, echo: bool = False) -> AsyncEngine:
    url = _build_async_url(database_url)
    engine = create_async_engine(url, echo=echo, future=True)
    if make_url(url).get_backend_name() == "sqlite":
        enable_sqlite_transactions(engine)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


# 创建异步引擎（连接在首次使用时建立）
engine = create_engine_from_url(settings.database.url, echo=settings.database.echo)

# 创建异步会话工厂
AsyncSessionLocal = create_session_factory(engine)


async def create_tables(bind: AsyncEngine = engine) -> None:
    """
    创建所有表

    根据models中定义的所有模型创建对应的数据库表
    """
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine(bind: AsyncEngine = engine) -> None:
    """关闭连接池；进程退出前调用"""
    await bind.dispose()
