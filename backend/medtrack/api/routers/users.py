from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from medtrack.api.responses import send_success
from medtrack.db import get_db
from medtrack.services import user_service
from medtrack.services.auth_service import require_admin

# admin only
router = APIRouter(prefix="/api/users", tags=["users"], dependencies=[Depends(require_admin)])


@router.get("")
async def list_patients(db: AsyncSession = Depends(get_db)):
    users = await user_service.list_patients(db)
    return send_success("Users retrieved.", {"result": len(users), "data": users})


@router.get("/active")
async def list_active_users(db: AsyncSession = Depends(get_db)):
    users = await user_service.list_active_users(db)
    return send_success("Active users retrieved.", {"result": len(users), "data": users})


@router.get("/{user_id}")
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    user = await user_service.get_user(db, user_id)
    return send_success("Patient found.", user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: int, db: AsyncSession = Depends(get_db)):
    await user_service.delete_user(db, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
