from fastapi import APIRouter, Depends, HTTPException, Request, status
from passlib.hash import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from webtoon_api.config import AUTH_RATE_LIMIT, USER_ROLE
from webtoon_api.database import get_async_session
from webtoon_api.limiter import limiter
from webtoon_api.models.user_model import Profile
from webtoon_api.schemas.user_schemas import TokenOut, UserCreate, UserLogin, UserOut
from webtoon_api.utils.token_utils import create_access_token, get_current_user

router = APIRouter(tags=["auth"])


@router.post("/signup", response_model=TokenOut, status_code=status.HTTP_201_CREATED)
@limiter.limit(AUTH_RATE_LIMIT)
async def signup(request: Request, user: UserCreate, db: AsyncSession = Depends(get_async_session)):
    username_norm = user.username.strip()

    existing = await db.scalar(select(Profile).where(Profile.username == username_norm))
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already exists")

    new_user = Profile(
        username=username_norm,
        password=bcrypt.hash(user.password),
        role=USER_ROLE,
    )
    try:
        db.add(new_user)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already exists")
    await db.refresh(new_user)

    return TokenOut(access_token=create_access_token(new_user), user=UserOut.model_validate(new_user))


@router.post("/login", response_model=TokenOut)
@limiter.limit(AUTH_RATE_LIMIT)
async def login(request: Request, user: UserLogin, db: AsyncSession = Depends(get_async_session)):
    if not user.username.strip() or not user.password.strip():
        raise HTTPException(status_code=400, detail="Username and password are required")

    db_user = await db.scalar(select(Profile).where(Profile.username == user.username.strip()))
    if not db_user or not bcrypt.verify(user.password, db_user.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return TokenOut(access_token=create_access_token(db_user), user=UserOut.model_validate(db_user))


@router.get("/me", response_model=UserOut)
async def me(user: Profile = Depends(get_current_user)):
    return user
