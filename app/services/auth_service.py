from datetime import timedelta
from typing import NamedTuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utc_naive_now
from app.core.config import settings
from app.core.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    verify_password,
)
from app.models.refresh_token import RefreshToken
from app.models.user import User, UserCreate, UserPublic


class IssuedTokens(NamedTuple):
    user: User
    access_token: str
    refresh_token: str
    expires_in: int  # seconds


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def get_user(session: AsyncSession, user_id: int) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def create_user(session: AsyncSession, data: UserCreate) -> User:
    user = User(
        email=data.email.lower(),
        full_name=data.full_name,
        hashed_password=hash_password(data.password),
    )
    session.add(user)
    await session.flush()
    await session.refresh(user)
    return user


def user_to_public(user: User) -> UserPublic:
    return UserPublic(id=user.id, email=user.email, full_name=user.full_name)


async def issue_tokens(session: AsyncSession, user: User) -> IssuedTokens:
    """Mint an access/refresh pair and persist the refresh token's jti."""
    access = create_access_token(user.id)
    refresh = create_refresh_token(user.id)
    _, jti = decode_refresh_token(refresh)
    expires_at = utc_naive_now() + timedelta(days=settings.refresh_token_expire_days)
    session.add(RefreshToken(user_id=user.id, jti=jti, expires_at=expires_at))
    await session.flush()
    return IssuedTokens(user, access, refresh, settings.access_token_expire_minutes * 60)


async def login_user(session: AsyncSession, email: str, password: str) -> IssuedTokens | None:
    user = await get_user_by_email(session, email)
    if not user or not verify_password(password, user.hashed_password):
        return None
    return await issue_tokens(session, user)


async def signup_user(
    session: AsyncSession, email: str, password: str, full_name: str | None = None
) -> IssuedTokens | None:
    if await get_user_by_email(session, email):
        return None
    user = await create_user(
        session, UserCreate(email=email, password=password, full_name=full_name)
    )
    return await issue_tokens(session, user)


async def revoke_refresh_token(session: AsyncSession, jti: str) -> None:
    await session.execute(
        update(RefreshToken)
        .where(RefreshToken.jti == jti)
        .values(revoked=True)
        .execution_options(synchronize_session=False)
    )


async def refresh_tokens(session: AsyncSession, refresh_token: str) -> IssuedTokens | None:
    """Rotate: the presented token is revoked and a new pair is issued."""
    user_id_str, jti = decode_refresh_token(refresh_token)
    if not user_id_str or not jti:
        return None
    # Conditional revoke so a token can only be redeemed once, even concurrently
    result = await session.execute(
        update(RefreshToken)
        .where(
            RefreshToken.jti == jti,
            RefreshToken.revoked == False,  # noqa: E712
            RefreshToken.expires_at > utc_naive_now(),
        )
        .values(revoked=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    user = await get_user(session, int(user_id_str))
    if not user:
        return None
    return await issue_tokens(session, user)
