import os

# Settings are read at import time; point them at SQLite before app imports.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "test-secret-key-with-enough-length-for-hs256"

import uuid  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core.security import create_access_token  # noqa: E402
from app.database import build_engine  # noqa: E402
from app.models import Base, Laboratory  # noqa: E402
from app.models.enums import StaffRole  # noqa: E402
from app.schemas.storage import ShelfCreate  # noqa: E402
from app.services.authorization import AuthContext  # noqa: E402
from app.services.shelves import ShelfService  # noqa: E402


@pytest.fixture
async def engine():
    engine = build_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


async def _add_lab(session: AsyncSession, name: str) -> Laboratory:
    lab = Laboratory(
        id=uuid.uuid4(),
        name=name,
        location="Building 1",
        entrance_x_position=0,
        entrance_y_position=0,
    )
    session.add(lab)
    await session.flush()
    return lab


@pytest.fixture
async def lab(db):
    return await _add_lab(db, "Microbiology")


@pytest.fixture
async def other_lab(db):
    return await _add_lab(db, "Chemistry")


@pytest.fixture
def client_id():
    return uuid.uuid4()


@pytest.fixture
def admin():
    return AuthContext(user_id=uuid.uuid4(), role=StaffRole.GLOBAL_ADMIN)


@pytest.fixture
def manager(lab):
    return AuthContext(
        user_id=uuid.uuid4(),
        role=StaffRole.LAB_QUALITY_MANAGER,
        laboratory_id=lab.id,
    )


@pytest.fixture
def assistant(lab):
    return AuthContext(
        user_id=uuid.uuid4(),
        role=StaffRole.LAB_ASSISTANT,
        laboratory_id=lab.id,
    )


@pytest.fixture
def outsider(other_lab):
    return AuthContext(
        user_id=uuid.uuid4(),
        role=StaffRole.LAB_QUALITY_MANAGER,
        laboratory_id=other_lab.id,
    )


@pytest.fixture
def client_user(client_id):
    return AuthContext(user_id=uuid.uuid4(), role=StaffRole.CLIENT, client_id=client_id)


@pytest.fixture
def make_shelf(db, lab, admin):
    """Create a shelf in ``lab`` through the service; keyword args override defaults."""

    async def _make(**overrides):
        data = {"shelf_letter": "A", "rows": 2, "columns": 3, "samples_per_position": 10}
        data.update(overrides)
        return await ShelfService(db).create_shelf(admin, lab.id, ShelfCreate(**data))

    return _make


@pytest.fixture
def bearer():
    """Build Authorization headers for an AuthContext."""

    def _headers(ctx: AuthContext) -> dict[str, str]:
        token = create_access_token(ctx.user_id, ctx.role, ctx.laboratory_id, ctx.client_id)
        return {"Authorization": f"Bearer {token}"}

    return _headers
