import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models import RefreshToken, Task, User
from pagination import PageResult, paginate

logger = logging.getLogger(__name__)


# --- users -----------------------------------------------------------------

async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    q = await db.execute(select(User).where(User.id == user_id))
    return q.scalars().first()


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    q = await db.execute(select(User).where(func.lower(User.username) == username.lower()))
    return q.scalars().first()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    q = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
    return q.scalars().first()


async def user_exists(db: AsyncSession, user_id: int) -> bool:
    q = await db.execute(select(User.id).where(User.id == user_id))
    return q.scalar() is not None


async def create_user(db: AsyncSession, user: User) -> User:
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def save_user(db: AsyncSession, user: User) -> User:
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def delete_user(db: AsyncSession, user: User) -> None:
    """Delete a user; tasks and refresh tokens go with it (ON DELETE CASCADE)."""
    await db.delete(user)
    await db.commit()


async def list_users_page(db: AsyncSession, page_number, page_size, **limits) -> PageResult:
    return await paginate(db, select(User), page_number, page_size, User.id, **limits)


# --- tasks -----------------------------------------------------------------

async def get_task_by_id(db: AsyncSession, task_id: int) -> Optional[Task]:
    q = await db.execute(select(Task).where(Task.id == task_id))
    return q.scalars().first()


async def create_task(db: AsyncSession, task: Task) -> Task:
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task


async def save_task(db: AsyncSession, task: Task) -> Task:
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task


async def delete_task(db: AsyncSession, task: Task) -> None:
    await db.delete(task)
    await db.commit()


async def count_user_tasks(db: AsyncSession, user_id: int) -> int:
    q = await db.execute(select(func.count(Task.id)).where(Task.user_id == user_id))
    return q.scalar() or 0


async def list_tasks_page(db: AsyncSession, page_number, page_size, owner_id: Optional[int] = None,
                          include_owner: bool = False, **limits) -> PageResult:
    """One page of tasks, pre-filtered by owner when owner_id is given."""
    stmt = select(Task)
    if owner_id is not None:
        stmt = stmt.where(Task.user_id == owner_id)
    options = (selectinload(Task.owner),) if include_owner else ()
    return await paginate(db, stmt, page_number, page_size, Task.id, options=options, **limits)


# --- refresh tokens --------------------------------------------------------

async def upsert_refresh_token(
    db: AsyncSession,
    user_id: int,
    token_hash: str,
    expires_at: datetime,
    created_by_ip: str,
    now: Optional[datetime] = None,
) -> RefreshToken:
    """Replace whatever token the user had with a new one, in one transaction.

    The delete and insert run inside a SAVEPOINT. Concurrent issuances for
    the same user race on the unique user_id constraint; the loser rolls
    back only its savepoint and retries once, so the last writer wins and
    objects already loaded in the session stay usable.
    """
    now = now or datetime.now(timezone.utc)
    for attempt in (1, 2):
        row = RefreshToken(
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            created_at=now,
            created_by_ip=created_by_ip or "unknown",
        )
        try:
            async with db.begin_nested():
                await db.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
                db.add(row)
        except IntegrityError:
            if attempt == 2:
                await db.rollback()
                raise
            logger.info("Concurrent refresh token write for user %s, retrying", user_id)
            continue
        await db.commit()
        return row


async def find_refresh_token(db: AsyncSession, user_id: int, token_hash: str) -> Optional[RefreshToken]:
    q = await db.execute(
        select(RefreshToken).where(
            (RefreshToken.user_id == user_id) & (RefreshToken.token_hash == token_hash)
        )
    )
    return q.scalars().first()


async def count_refresh_tokens_for_user(db: AsyncSession, user_id: int) -> int:
    q = await db.execute(select(func.count(RefreshToken.id)).where(RefreshToken.user_id == user_id))
    return q.scalar() or 0
