# File: auth/dependencies.py

import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from crud.auth_crud import get_user_by_id
from database import get_db
from models import User, UserRole
from auth.jwt_handler import verify_token_payload

logger = logging.getLogger(__name__)

# Tokens are issued by the external identity provider; we only verify them
bearer_scheme = HTTPBearer(auto_error=False)

# ===== CORE USER AUTHENTICATION =====

async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    session: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get current user from the bearer token.
    Raises 401 if the token is missing or invalid, or the user is unknown.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    try:
        payload = verify_token_payload(credentials.credentials)
    except JWTError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise credentials_exception

    user_id_from_token = payload.get("sub")
    if user_id_from_token is None:
        logger.warning("Token missing 'sub' field")
        raise credentials_exception

    user = await get_user_by_id(session, user_id_from_token)
    if user is None:
        logger.warning(f"User not found for ID: {user_id_from_token}")
        raise credentials_exception
    return user

async def get_current_active_user(
    current_user: Annotated[User, Depends(get_current_user)]
) -> User:
    if not current_user.is_active:
        logger.warning(f"Inactive user attempted access: {current_user.id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive."
        )
    return current_user

# ===== ROLE-SPECIFIC DEPENDENCIES =====

async def get_current_driver(
    current_user: Annotated[User, Depends(get_current_active_user)]
) -> User:
    if current_user.role != UserRole.DRIVER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Driver access required."
        )
    return current_user

async def get_current_passenger(
    current_user: Annotated[User, Depends(get_current_active_user)]
) -> User:
    if current_user.role != UserRole.PASSENGER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Passenger access required."
        )
    return current_user
