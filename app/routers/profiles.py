from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user_id
from app.schemas import ProfileEnvelope
from app.services import profile_service

router = APIRouter(prefix="/api/profiles", tags=["profiles"])


@router.get("/{username}", response_model=ProfileEnvelope)
async def get_profile(
    username: str,
    user_id: int | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return {"profile": await profile_service.get_profile(db, username, viewer_id=user_id)}


@router.post("/{username}/follow", response_model=ProfileEnvelope)
async def follow_user(
    username: str,
    user_id: int | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return {"profile": await profile_service.follow(db, user_id, username)}


@router.delete("/{username}/follow", response_model=ProfileEnvelope)
async def unfollow_user(
    username: str,
    user_id: int | None = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return {"profile": await profile_service.unfollow(db, user_id, username)}
