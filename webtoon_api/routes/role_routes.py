from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from webtoon_api.database import get_async_session
from webtoon_api.deps.admin import require_admin
from webtoon_api.schemas.user_schemas import RoleChange, RoleIn, RoleOut, UserOut
from webtoon_api.services import role_service

router = APIRouter(prefix="/admin", tags=["admin-roles"], dependencies=[Depends(require_admin)])


@router.get("/roles", response_model=List[RoleOut])
async def list_roles(session: AsyncSession = Depends(get_async_session)):
    return await role_service.list_roles(session)


@router.post("/roles", response_model=RoleOut, status_code=status.HTTP_201_CREATED)
async def create_role(payload: RoleIn, session: AsyncSession = Depends(get_async_session)):
    return await role_service.create_role(session, payload.name, payload.description)


@router.put("/roles/{role_id}", response_model=RoleOut)
async def update_role(role_id: int, payload: RoleIn, session: AsyncSession = Depends(get_async_session)):
    return await role_service.update_role(session, role_id, payload.name, payload.description)


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(role_id: int, session: AsyncSession = Depends(get_async_session)):
    await role_service.delete_role(session, role_id)


@router.get("/users", response_model=List[UserOut])
async def list_users(session: AsyncSession = Depends(get_async_session)):
    return await role_service.list_users(session)


@router.put("/users/{user_id}/role", response_model=UserOut)
async def change_user_role(user_id: int, payload: RoleChange, session: AsyncSession = Depends(get_async_session)):
    return await role_service.set_user_role(session, user_id, payload.role)
