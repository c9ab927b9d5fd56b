# File: crud/auth_crud.py

import logging
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from exceptions import StoreUnavailableError
from models import User, UserRole

logger = logging.getLogger(__name__)

async def get_user_by_id(session: AsyncSession, user_id: Union[str, UUID]) -> Optional[User]:
    if isinstance(user_id, str):
        try:
            user_id = UUID(user_id)
        except ValueError:
            logger.warning(f"Malformed user id in token: {user_id!r}")
            return None
    try:
        result = await session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching user {user_id}: {e}", exc_info=True)
        raise StoreUnavailableError("An error occurred while fetching the user.") from e

async def create_user(
    session: AsyncSession,
    role: UserRole,
    full_name: Optional[str] = None,
    email: Optional[str] = None,
) -> User:
    """Registers the local projection of an externally managed identity."""
    user = User(role=role, full_name=full_name, email=email)
    session.add(user)
    try:
        await session.flush()
        await session.refresh(user)
    except SQLAlchemyError as e:
        logger.error(f"DB error creating user projection: {e}", exc_info=True)
        raise StoreUnavailableError("Error saving the user.") from e
    logger.info(f"User {user.id} registered with role {role.value}")
    return user
