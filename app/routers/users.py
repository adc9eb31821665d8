from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.schemas import UserEnvelope, UserResponse
from app.services import user_service

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("", status_code=201, response_model=UserResponse)
async def create_user(payload: UserEnvelope, db: AsyncSession = Depends(get_db)):
    return await user_service.create_user(db, payload.user)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    return await user_service.get_user(db, user_id)
