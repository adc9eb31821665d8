"""
User service: registration and lookup for the User aggregate.

Registration creates the User row and its one-to-one Profile together.
Email and username uniqueness is enforced by the database; a violation
comes back from the flush and is reported as ``ConflictError``.
"""
import base64
import hashlib
import logging
import os

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import transaction
from app.errors import ConflictError
from app.models import Profile, User
from app.repositories.article_repository import ArticleRepository
from app.schemas import UserCreate

logger = logging.getLogger(__name__)

_repository = ArticleRepository()


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Return ``salt$digest`` (both base64) for *password* using PBKDF2-SHA256."""
    salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac(
        "sha256", password.encode(), salt, iterations=settings.PASSWORD_HASH_ITERATIONS
    )
    return f"{base64.b64encode(salt).decode()}${base64.b64encode(dk).decode()}"


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _user_to_dict(user: User, profile: Profile) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "username": profile.username,
        "bio": profile.bio,
        "image": profile.image,
    }


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def create_user(db: AsyncSession, data: UserCreate) -> dict:
    async with transaction(db):
        user = User(email=data.email, password=hash_password(data.password))
        profile = Profile(username=data.username, bio=data.bio, image=data.image)
        db.add(user)
        try:
            await db.flush()
            profile.user_id = user.id
            db.add(profile)
            await db.flush()
        except IntegrityError as exc:
            raise ConflictError("A user with this username or email already exists") from exc
        logger.info("Registered user %s (%s)", user.id, data.username)
        return _user_to_dict(user, profile)


async def get_user(db: AsyncSession, user_id: int) -> dict:
    """Return the user with its profile; raises ``NotFoundError`` when absent."""
    async with transaction(db):
        user = await _repository.get_user(db, user_id)
        return _user_to_dict(user, user.profile)
