from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from webtoon_api.config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from webtoon_api.database import get_async_session
from webtoon_api.models.user_model import Profile

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


def _get_secret_key() -> str:
    secret = SECRET_KEY
    if not secret:
        # Fail fast with a clear message instead of a generic 500
        raise RuntimeError("SECRET_KEY is not configured in the backend environment")
    if len(secret) < 32:
        raise RuntimeError("SECRET_KEY is too short; use at least 32 characters")
    return secret


def create_access_token(user: Profile) -> str:
    # Only the identity goes in the token; the role is read from the profile row per request
    expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode = {
        "id": user.id,
        "sub": user.username,
        "exp": expire,
    }
    try:
        return jwt.encode(to_encode, _get_secret_key(), algorithm=ALGORITHM)
    except JWTError as e:
        raise RuntimeError(f"JWT encode failed: {e}")


def decode_user_id(token: str) -> Optional[int]:
    try:
        payload = jwt.decode(token, _get_secret_key(), algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("id")
    return int(user_id) if user_id is not None else None


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_async_session)
) -> Profile:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    user_id = decode_user_id(token)
    if user_id is None:
        raise credentials_exception

    user = await session.get(Profile, user_id)
    if not user:
        raise credentials_exception

    return user


async def get_current_user_optional(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
) -> Optional[Profile]:
    """Anonymous visitors (no or bad token) get None instead of a 401."""
    auth = request.headers.get("Authorization")
    if not auth or not auth.lower().startswith("bearer "):
        return None
    user_id = decode_user_id(auth.split(" ", 1)[1].strip())
    if user_id is None:
        return None
    return await session.get(Profile, user_id)
