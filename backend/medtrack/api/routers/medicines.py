from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from medtrack.api.responses import send_success
from medtrack.db import get_db
from medtrack.schemas import MedicinePatch
from medtrack.services import medicine_service
from medtrack.services.auth_service import get_current_principal, require_admin
from medtrack.services.media_store import ImageUpload, MediaStore, get_media_store

router = APIRouter(prefix="/api/medicines", tags=["medicines"], dependencies=[Depends(get_current_principal)])


def _base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")


async def _read_upload(upload: Optional[UploadFile]) -> Optional[ImageUpload]:
    if upload is None or not upload.filename:
        return None
    return ImageUpload(data=await upload.read(), filename=upload.filename)


@router.get("")
async def list_medicines(request: Request, db: AsyncSession = Depends(get_db)):
    medicines = await medicine_service.list_medicines(db, _base_url(request))
    return send_success("Medicines retrieved.", {"results": len(medicines), "data": medicines})


@router.get("/{medicine_id}")
async def get_medicine(medicine_id: int, request: Request, db: AsyncSession = Depends(get_db)):
    medicine = await medicine_service.get_medicine(db, medicine_id, _base_url(request))
    return send_success("Medicine retrieved.", medicine)


@router.post("", dependencies=[Depends(require_admin)])
async def create_medicine(
    request: Request,
    name: Optional[str] = Form(None, max_length=100),
    stock: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    medicineImage: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    store: MediaStore = Depends(get_media_store),
):
    medicine = await medicine_service.create_medicine(
        db, store, name, stock, description, await _read_upload(medicineImage), _base_url(request)
    )
    return send_success("Medicine created.", medicine, 201)


@router.put("/{medicine_id}", dependencies=[Depends(require_admin)])
async def update_medicine(
    medicine_id: int,
    request: Request,
    name: Optional[str] = Form(None, max_length=100),
    stock: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    medicineImage: Optional[UploadFile] = File(None),
    db: AsyncSession = Depends(get_db),
    store: MediaStore = Depends(get_media_store),
):
    # only the form fields actually sent become part of the patch
    fields = {k: v for k, v in {"name": name, "stock": stock, "description": description}.items() if v is not None}
    if stock is not None:
        fields["stock"] = medicine_service.parse_stock(stock)
    patch = MedicinePatch(**fields)
    medicine = await medicine_service.update_medicine(
        db, store, medicine_id, patch, await _read_upload(medicineImage), _base_url(request)
    )
    return send_success("Medicine updated successfully.", medicine)


@router.delete("/{medicine_id}", dependencies=[Depends(require_admin)])
async def delete_medicine(
    medicine_id: int,
    db: AsyncSession = Depends(get_db),
    store: MediaStore = Depends(get_media_store),
):
    deleted = await medicine_service.delete_medicine(db, store, medicine_id)
    return send_success("Medicine deleted.", deleted)
