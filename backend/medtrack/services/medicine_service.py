import logging
from typing import List, Optional, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from medtrack.db import unit_of_work
from medtrack.errors import InvalidField, MedicineNotFound, MissingRequiredField
from medtrack.models import Medicine
from medtrack.schemas import MedicineOut, MedicinePatch
from medtrack.services.media_store import ImageUpload, MediaStore
from medtrack.services.reconcile import as_utc

logger = logging.getLogger(__name__)


def image_url(reference: Optional[str], base_url: Optional[str]) -> Optional[str]:
    if not reference:
        return None
    prefix = (base_url or "").rstrip("/")
    return f"{prefix}/uploads/{reference}"


def to_out(medicine: Medicine, base_url: Optional[str] = None) -> MedicineOut:
    return MedicineOut(
        id=medicine.id,
        name=medicine.name,
        stock=medicine.stock,
        description=medicine.description,
        medicine_image=medicine.medicine_image,
        medicine_image_url=image_url(medicine.medicine_image, base_url),
        created_at=as_utc(medicine.created_at),
        updated_at=as_utc(medicine.updated_at),
    )


def parse_stock(value: Union[int, str, None]) -> int:
    try:
        stock = int(value)
    except (TypeError, ValueError):
        raise InvalidField("Stock must be a whole number.")
    if stock < 0:
        raise InvalidField("Stock must not be negative.")
    return stock


async def _load(db: AsyncSession, medicine_id: int) -> Medicine:
    medicine = await db.get(Medicine, medicine_id)
    if medicine is None:
        raise MedicineNotFound()
    return medicine


async def list_medicines(db: AsyncSession, base_url: Optional[str] = None) -> List[MedicineOut]:
    async with unit_of_work(db):
        res = await db.execute(select(Medicine).order_by(Medicine.name))
        medicines = res.scalars().all()
    return [to_out(m, base_url) for m in medicines]


async def get_medicine(db: AsyncSession, medicine_id: int, base_url: Optional[str] = None) -> MedicineOut:
    async with unit_of_work(db):
        medicine = await _load(db, medicine_id)
    return to_out(medicine, base_url)


async def create_medicine(
    db: AsyncSession,
    store: MediaStore,
    name: Optional[str],
    stock: Union[int, str, None],
    description: Optional[str] = None,
    image: Optional[ImageUpload] = None,
    base_url: Optional[str] = None,
) -> MedicineOut:
    if not name or stock is None or stock == "":
        raise MissingRequiredField("Name and stock are required.")
    stock = parse_stock(stock)

    reference = await store.save(image.data, image.filename) if image else None
    try:
        async with unit_of_work(db):
            medicine = Medicine(
                name=name, stock=stock, description=description or None, medicine_image=reference
            )
            db.add(medicine)
            await db.flush()
            await db.refresh(medicine)
    except Exception:
        await store.delete(reference)
        raise

    logger.info("Created medicine id=%s stock=%s", medicine.id, medicine.stock)
    return to_out(medicine, base_url)


async def update_medicine(
    db: AsyncSession,
    store: MediaStore,
    medicine_id: int,
    patch: MedicinePatch,
    image: Optional[ImageUpload] = None,
    base_url: Optional[str] = None,
) -> MedicineOut:
    """
    Partial update. A new image replaces the stored one; the old file is
    removed only after the row points at the new one.
    """
    changes = patch.model_dump(exclude_unset=True)
    if "stock" in changes:
        changes["stock"] = parse_stock(changes["stock"])
    if "description" in changes:
        changes["description"] = changes["description"] or None
    if "name" in changes and not changes["name"]:
        raise MissingRequiredField("Name must not be empty.")

    async with unit_of_work(db):
        await _load(db, medicine_id)

    new_reference = await store.save(image.data, image.filename) if image else None
    try:
        async with unit_of_work(db):
            medicine = await _load(db, medicine_id)
            old_reference = medicine.medicine_image
            for field, value in changes.items():
                setattr(medicine, field, value)
            if new_reference:
                medicine.medicine_image = new_reference
            medicine.updated_at = func.now()
            await db.flush()
            await db.refresh(medicine)
    except Exception:
        await store.delete(new_reference)
        raise

    if new_reference and old_reference:
        await store.delete(old_reference)
    return to_out(medicine, base_url)


async def delete_medicine(db: AsyncSession, store: MediaStore, medicine_id: int) -> MedicineOut:
    """Delete the row, then its picture. Still-referenced medicines are refused."""
    async with unit_of_work(db):
        medicine = await _load(db, medicine_id)
        deleted = to_out(medicine)
        await db.delete(medicine)

    await store.delete(deleted.medicine_image)
    logger.info("Deleted medicine id=%s", medicine_id)
    return deleted
