# medtrack/seed.py
import asyncio
import logging

from sqlalchemy import select, insert
from sqlalchemy.ext.asyncio import AsyncSession

from medtrack.config import ROLE_ADMIN, ROLE_PATIENT
from medtrack.db import SessionLocal
from medtrack.models import Medicine, Role, User
from medtrack.services.auth_service import hash_password

logger = logging.getLogger(__name__)

ADMIN_NAME = "Admin"
ADMIN_PASSWORD = "admin123"
ADMIN_PHONE = "08123456789"
STARTER_STOCK = 20

MEDICINE_NAMES = [
    "Acyclovir 400 mg",
    "Allopurinol 100 mg",
    "Ambroxol",
    "Amlodipin 5 mg",
    "Amlodipin 10 mg",
    "Amoxicillin 500 mg",
    "Antasida DOEN",
    "Asam Mefenamat 500 mg",
    "Captopril 25 mg",
    "Cetirizine 10 mg",
    "Ciprofloxacin 500 mg",
    "Dexamethasone 0,5 mg",
    "Glibenclamide 5 mg",
    "Ibuprofen 400 mg",
    "Loratadine 10 mg",
    "Metformin HCl 500 mg",
    "Omeprazole 20 mg",
    "Paracetamol 500 mg",
    "Salbutamol 2 mg",
    "Simvastatin 10 mg",
    "Vitamin B Complex",
    "Vitamin C (Asam Askorbat) 50 mg",
]


async def seed_roles(session: AsyncSession):
    existing = set((await session.execute(select(Role.id))).scalars().all())
    missing = [
        {"id": rid, "name": name}
        for rid, name in ((ROLE_ADMIN, "admin"), (ROLE_PATIENT, "user"))
        if rid not in existing
    ]
    if missing:
        await session.execute(insert(Role).values(missing))


async def seed_admin(session: AsyncSession):
    found = await session.execute(select(User.id).where(User.name == ADMIN_NAME))
    if found.scalar_one_or_none() is None:
        session.add(User(
            name=ADMIN_NAME,
            password=hash_password(ADMIN_PASSWORD),
            roles_id=ROLE_ADMIN,
            no_hp=ADMIN_PHONE,
        ))


async def seed_medicines(session: AsyncSession):
    existing = set((await session.execute(select(Medicine.name))).scalars().all())
    rows = [{"name": n, "stock": STARTER_STOCK} for n in MEDICINE_NAMES if n not in existing]
    if rows:
        await session.execute(insert(Medicine).values(rows))


async def seed_data(session: AsyncSession):
    """Idempotent: safe to run against an already seeded database."""
    await seed_roles(session)
    await seed_admin(session)
    await seed_medicines(session)
    await session.commit()


async def main():
    async with SessionLocal() as session:
        await seed_data(session)
    logger.info("Seeding finished.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
