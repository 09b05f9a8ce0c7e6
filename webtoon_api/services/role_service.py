from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webtoon_api.config import RESERVED_ROLES
from webtoon_api.exceptions import NotFoundError, ReservedRoleError, RoleValidationError
from webtoon_api.models.user_model import Profile, Role


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise RoleValidationError("Role name cannot be empty.")
    if cleaned.lower() in RESERVED_ROLES:
        raise ReservedRoleError(f"The '{cleaned.lower()}' role is reserved.")
    return cleaned


async def list_roles(session: AsyncSession) -> List[Role]:
    result = await session.execute(select(Role).order_by(Role.name.asc()))
    return list(result.scalars().all())


async def create_role(session: AsyncSession, name: str, description: Optional[str] = None) -> Role:
    role = Role(name=_clean_name(name), description=(description or "").strip() or None)
    session.add(role)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise RoleValidationError(f'Role "{role.name}" already exists.')
    await session.refresh(role)
    return role


async def update_role(session: AsyncSession, role_id: int, name: str, description: Optional[str] = None) -> Role:
    role = await session.get(Role, role_id)
    if role is None:
        raise NotFoundError("Role", role_id)
    if role.name.lower() in RESERVED_ROLES:
        raise ReservedRoleError(f"The '{role.name}' role is reserved.")

    role.name = _clean_name(name)
    role.description = (description or "").strip() or None
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise RoleValidationError(f'Another role named "{name.strip()}" already exists.')
    await session.refresh(role)
    return role


async def delete_role(session: AsyncSession, role_id: int) -> None:
    role = await session.get(Role, role_id)
    if role is None:
        raise NotFoundError("Role", role_id)
    if role.name.lower() in RESERVED_ROLES:
        raise ReservedRoleError(f"The '{role.name}' role is reserved and cannot be deleted.")
    await session.delete(role)
    await session.commit()


async def role_exists(session: AsyncSession, name: str) -> bool:
    if name in RESERVED_ROLES:
        return True
    return await session.scalar(select(Role.id).where(Role.name == name)) is not None


async def list_users(session: AsyncSession) -> List[Profile]:
    result = await session.execute(select(Profile).order_by(Profile.created_at.desc(), Profile.id.desc()))
    return list(result.scalars().all())


async def set_user_role(session: AsyncSession, user_id: int, role_name: str) -> Profile:
    profile = await session.get(Profile, user_id)
    if profile is None:
        raise NotFoundError("User", user_id)
    role_name = (role_name or "").strip()
    if not await role_exists(session, role_name):
        raise RoleValidationError(f'Unknown role "{role_name}".')
    profile.role = role_name
    await session.commit()
    await session.refresh(profile)
    return profile
