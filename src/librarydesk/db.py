from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import DeclarativeBase
from librarydesk.config import settings

class Base(DeclarativeBase):
    pass

def configure_sqlite(engine: AsyncEngine) -> AsyncEngine:
    # SQLite no bloquea por fila: cada transacción toma el lock de escritura al empezar
    if engine.dialect.name != "sqlite":
        return engine

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # aiosqlite deja de emitir su propio BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine

def make_engine(url: str, **kw) -> AsyncEngine:
    if url.startswith("sqlite"):
        return configure_sqlite(create_async_engine(url, echo=settings.SQL_ECHO, future=True, **kw))
    return create_async_engine(url, echo=settings.SQL_ECHO, future=True, pool_pre_ping=True, pool_recycle=1800, **kw)

engine = make_engine(settings.DATABASE_URL)

SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def init_db():
    from librarydesk import models
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
