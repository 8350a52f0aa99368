from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from afina.db.models import User


async def get_or_create_user(
    session: AsyncSession,
    telegram_id: int,
    username: str | None,
    first_name: str | None,
    last_name: str | None,
    is_admin: bool,
) -> User:
    result = await session.execute(select(User).where(User.telegram_id == telegram_id))
    user = result.scalar_one_or_none()
    if user:
        user.telegram_username = username
        user.telegram_first_name = first_name
        user.telegram_last_name = last_name
        user.is_admin = is_admin or user.is_admin
        return user
    user = User(
        telegram_id=telegram_id,
        telegram_username=username,
        telegram_first_name=first_name,
        telegram_last_name=last_name,
        is_admin=is_admin,
    )
    session.add(user)
    return user


async def get_user_by_id(session: AsyncSession, user_id: int) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()
