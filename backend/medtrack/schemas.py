from __future__ import annotations
from typing import Optional
from pydantic import BaseModel, Field
from datetime import datetime


class _CamelModel(BaseModel):
    """Accepts and emits the camelCase keys the mobile client uses."""

    class Config:
        from_attributes = True
        populate_by_name = True


# auth
class RegisterRequest(_CamelModel):
    # presence is checked by the service so the message names every missing field
    name: Optional[str] = Field(None, max_length=100)
    password: Optional[str] = None
    no_hp: Optional[str] = Field(None, alias="noHp", max_length=15)


class LoginRequest(BaseModel):
    name: Optional[str] = None
    password: Optional[str] = None


class Principal(BaseModel):
    """Identity resolved from a verified bearer token and its active session."""
    id: int
    name: str
    role: int


class UserPublic(_CamelModel):
    id: int
    name: str
    no_hp: str = Field(alias="noHp")
    roles_id: Optional[int] = Field(None, alias="rolesId")


class LoginResult(_CamelModel):
    token: str
    expires_at: datetime = Field(alias="expiresAt")
    user: Principal


class SessionStatus(_CamelModel):
    user: Principal
    expires_at: datetime = Field(alias="expiresAt")
    time_until_expiry: int = Field(alias="timeUntilExpiry")


class ActiveUser(_CamelModel):
    id: int
    name: str
    no_hp: str = Field(alias="noHp")
    login_at: Optional[datetime] = Field(None, alias="loginAt")
    is_active: bool = Field(alias="isActive")


# medicines
class MedicineOut(_CamelModel):
    id: int
    name: str
    stock: int
    description: Optional[str] = None
    medicine_image: Optional[str] = Field(None, alias="medicineImage")
    medicine_image_url: Optional[str] = Field(None, alias="medicineImageUrl")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")


class MedicinePatch(_CamelModel):
    name: Optional[str] = None
    stock: Optional[int] = None
    description: Optional[str] = None


class MedicineSnapshot(_CamelModel):
    id: int
    name: str
    stock: int


# reminders
class ReminderCreate(_CamelModel):
    med_id: Optional[int] = Field(None, alias="medId")
    time: Optional[str] = Field(None, max_length=20)
    before_meal: Optional[bool] = Field(None, alias="beforeMeal")
    user_id: Optional[int] = Field(None, alias="userId")
    quantity: Optional[int] = None


class ReminderPatch(_CamelModel):
    """Partial reminder update. Only fields present in the request are applied."""
    user_id: Optional[int] = Field(None, alias="userId")
    med_id: Optional[int] = Field(None, alias="medId")
    times_taken: Optional[int] = Field(None, alias="timesTaken")
    quantity: Optional[int] = None
    before_meal: Optional[bool] = Field(None, alias="beforeMeal")
    time: Optional[str] = Field(None, max_length=20)


class TimesTakenUpdate(_CamelModel):
    times_taken: Optional[int] = Field(None, alias="timesTaken")
    last_taken_at: Optional[datetime] = Field(None, alias="lastTakenAt")


class RemindersForUserRequest(_CamelModel):
    id: Optional[int] = None


class ReminderOut(_CamelModel):
    id: int
    user_id: int = Field(alias="userId")
    med_id: int = Field(alias="medId")
    quantity: int
    times_taken: int = Field(alias="timesTaken")
    time: str
    before_meal: bool = Field(alias="beforeMeal")
    last_taken_at: Optional[datetime] = Field(None, alias="lastTakenAt")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    medicine_name: str = Field("", alias="medicineName")
    medicine_image: str = Field("", alias="medicineImage")


class ReminderCreated(_CamelModel):
    reminder: ReminderOut
    medicine: MedicineSnapshot


class DoseLog(_CamelModel):
    id: int
    times_taken: int = Field(alias="timesTaken")
    last_taken_at: Optional[datetime] = Field(None, alias="lastTakenAt")

