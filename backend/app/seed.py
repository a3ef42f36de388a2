"""Seed the storage database with a demo laboratory.

Idempotent: checks for existing data before inserting.
Run via: python -m app.seed
"""

import asyncio
import uuid

from sqlalchemy import select

from app.core.security import create_access_token
from app.database import async_session_factory
from app.models.enums import StaffRole
from app.models.storage import Laboratory
from app.schemas.storage import ShelfCreate
from app.services.authorization import AuthContext
from app.services.positions import PositionService
from app.services.shelves import ShelfService

DEMO_LAB_NAME = "Central Microbiology Lab"
DEMO_CLIENT_ID = uuid.UUID("00000000-0000-4000-8000-00000000c11e")
SEED_ADMIN = AuthContext(
    user_id=uuid.UUID("00000000-0000-4000-8000-0000000000ad"),
    role=StaffRole.GLOBAL_ADMIN,
)

# (letter, rows, columns, samples per position, x, y, dedicated client?)
SHELVES = [
    ("A", 4, 6, 10, 2, 2, False),
    ("B", 4, 6, 10, 16, 2, True),
    ("C", 3, 8, 5, 2, 6, False),
    ("D", 2, 4, 20, 20, 6, True),
]


async def run_seed() -> None:
    print("=" * 60)
    print("Lab Storage Seeder")
    print("=" * 60)

    async with async_session_factory() as session:
        result = await session.execute(
            select(Laboratory).where(Laboratory.name == DEMO_LAB_NAME)
        )
        lab = result.scalar_one_or_none()
        if lab is not None:
            print("[laboratory] Already seeded, skipping.")
            return

        lab = Laboratory(
            id=uuid.uuid4(),
            name=DEMO_LAB_NAME,
            location="Building 2, Floor 1",
            entrance_x_position=0,
            entrance_y_position=10,
        )
        session.add(lab)
        await session.flush()
        print(f"  [laboratory] Created {lab.name}")

        shelves = ShelfService(session)
        created = []
        for letter, rows, cols, per_pos, x, y, dedicated in SHELVES:
            shelf = await shelves.create_shelf(SEED_ADMIN, lab.id, ShelfCreate(
                shelf_letter=letter,
                rows=rows,
                columns=cols,
                samples_per_position=per_pos,
                x_position=x,
                y_position=y,
                client_id=DEMO_CLIENT_ID if dedicated else None,
                allow_client_view=dedicated,
            ))
            created.append(shelf)
            print(f"  [shelves] Created shelf {letter} ({rows}x{cols}, {per_pos}/position)")

        # Put some samples on the first shelf so utilization is not empty.
        positions = PositionService(session)
        grid = await positions.get_grid(SEED_ADMIN, lab.id, created[0].id)
        for i, position in enumerate(grid["positions"][:12]):
            await positions.set_occupancy(
                SEED_ADMIN, lab.id, position.id, (i % position.capacity_per_position) + 1,
                note="Seed data",
            )
        print("  [positions] Recorded occupancy on shelf A")

        await session.commit()

    print("\n" + "=" * 60)
    print("Seed complete!")
    print("=" * 60)
    print(f"\nLaboratory id: {lab.id}")
    print(f"Demo client id: {DEMO_CLIENT_ID}")
    token = create_access_token(SEED_ADMIN.user_id, SEED_ADMIN.role)
    print(f"\nAdmin bearer token:\n  {token}")


if __name__ == "__main__":
    asyncio.run(run_seed())
