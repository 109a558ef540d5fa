from collections.abc import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from .config import settings
from .base import Base

engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

def import_models():
    # every mapped class must be registered on Base.metadata before create_all
    from app.modules.directory import models as _directory  # noqa: F401
    from app.modules.schedules import models as _schedules  # noqa: F401
    from app.modules.appointments import models as _appointments  # noqa: F401
    from app.modules.payments import models as _payments  # noqa: F401
    from app.modules.notifications import models as _notifications  # noqa: F401
    from app.modules.events import outbox as _outbox  # noqa: F401

async def init_models():
    ## In dev-only "create_all" mode, build the schema here; otherwise, migrations own the schema.
    if settings.DB_MANAGE == "create_all":
        import_models()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
