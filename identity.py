"""User store: creation, credential checks, roles and profile edits.

Password hashing is passlib's job (see auth.pwd_context); this module only
decides when to call it.
"""
import logging
import re
from typing import List, Optional

from passlib.context import CryptContext
from passlib.exc import UnknownHashError
from sqlalchemy.ext.asyncio import AsyncSession

import crud
from auth import pwd_context
from authz import ADMIN, ALL_ROLES, USER
from errors import NotFoundError, ValidationError
from models import User
from pagination import PageResult

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[A-Za-z0-9._@-]{3,50}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


def password_problems(password: str) -> List[str]:
    problems = []
    if len(password or "") < MIN_PASSWORD_LENGTH:
        problems.append(f"Passwords must be at least {MIN_PASSWORD_LENGTH} characters.")
    if not re.search(r"[A-Z]", password or ""):
        problems.append("Passwords must have at least one uppercase ('A'-'Z').")
    if not re.search(r"[a-z]", password or ""):
        problems.append("Passwords must have at least one lowercase ('a'-'z').")
    if not re.search(r"[0-9]", password or ""):
        problems.append("Passwords must have at least one digit ('0'-'9').")
    if not re.search(r"[^A-Za-z0-9]", password or ""):
        problems.append("Passwords must have at least one non alphanumeric character.")
    return problems


class IdentityStore:
    def __init__(self, db: AsyncSession, hasher: CryptContext = pwd_context):
        self.db = db
        self.hasher = hasher

    async def _profile_problems(self, username: str, email: str, country: Optional[str],
                                exclude_id: Optional[int] = None) -> List[str]:
        problems = []
        if not username or not USERNAME_RE.match(username):
            problems.append("Username must be 3-50 characters of letters, digits or ._-@")
        else:
            other = await crud.get_user_by_username(self.db, username)
            if other and other.id != exclude_id:
                problems.append(f"Username '{username}' is already taken.")
        if not email or not EMAIL_RE.match(email):
            problems.append("Email is not a valid address.")
        else:
            other = await crud.get_user_by_email(self.db, email)
            if other and other.id != exclude_id:
                problems.append(f"Email '{email}' is already taken.")
        if not country or not country.strip():
            problems.append("Country is required.")
        return problems

    async def create_user(self, username: str, email: str, password: str, country: str,
                          phone_number: Optional[str] = None, image_path: Optional[str] = None,
                          roles: Optional[List[str]] = None) -> User:
        problems = await self._profile_problems(username, email, country)
        problems += password_problems(password)
        if problems:
            raise ValidationError("User registration failed.", problems)
        user = User(
            username=username,
            email=email,
            hashed_password=self.hasher.hash(password),
            phone_number=phone_number,
            country=country.strip(),
            image_path=image_path,
            roles=self._normalize_roles(roles),
        )
        created = await crud.create_user(self.db, user)
        logger.info("Registered user %s", created.id)
        return created

    @staticmethod
    def _normalize_roles(roles) -> List[str]:
        roles = [r for r in (roles or []) if r in ALL_ROLES]
        return roles or [USER]

    async def verify_password(self, user: User, password: str) -> bool:
        try:
            ok = self.hasher.verify(password, user.hashed_password)
        except (UnknownHashError, ValueError):
            return False
        if ok and self.hasher.needs_update(user.hashed_password):
            user.hashed_password = self.hasher.hash(password)
            await crud.save_user(self.db, user)
        return ok

    async def find_by_id(self, user_id: int) -> Optional[User]:
        return await crud.get_user_by_id(self.db, user_id)

    async def find_by_username(self, username: str) -> Optional[User]:
        return await crud.get_user_by_username(self.db, username)

    async def exists(self, user_id: int) -> bool:
        return await crud.user_exists(self.db, user_id)

    async def get_roles(self, user: User) -> List[str]:
        return list(user.roles or [])

    async def assign_role(self, user: User, role: str) -> User:
        if role not in ALL_ROLES:
            raise ValidationError(f"Unknown role '{role}'.")
        if role not in (user.roles or []):
            # reassign, JSON columns do not track in-place mutation
            user.roles = list(user.roles or []) + [role]
            await crud.save_user(self.db, user)
        return user

    async def update_profile(self, user_id: int, username: str, email: str, country: str,
                             phone_number: Optional[str] = None, image_path: Optional[str] = None) -> User:
        user = await self.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        problems = await self._profile_problems(username, email, country, exclude_id=user.id)
        if problems:
            raise ValidationError("Update failed.", problems)
        user.username = username
        user.email = email
        user.country = country.strip()
        user.phone_number = phone_number
        if image_path:
            user.image_path = image_path
        return await crud.save_user(self.db, user)

    async def delete_user(self, user_id: int) -> None:
        user = await self.find_by_id(user_id)
        if user is None:
            raise NotFoundError(f"User with ID {user_id} not found.")
        await crud.delete_user(self.db, user)
        logger.info("Deleted user %s", user_id)

    async def list_users(self, page_number, page_size, **limits) -> PageResult:
        return await crud.list_users_page(self.db, page_number, page_size, **limits)

    async def ensure_admin(self, username: str, password: str, email: Optional[str] = None,
                           country: str = "N/A") -> User:
        """Create the admin account if missing; make sure it carries the Admin role."""
        existing = await self.find_by_username(username)
        if existing:
            return await self.assign_role(existing, ADMIN)
        return await self.create_user(
            username=username,
            email=email or f"{username}@localhost.localdomain",
            password=password,
            country=country,
            roles=[ADMIN],
        )
