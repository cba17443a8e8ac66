"""Login and refresh exchange.

Both end the same way: mint an access token, mint a refresh token and
overwrite the user's stored refresh token. Because the slot is overwritten,
a refresh token works for exactly one exchange.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

import crud
from auth import (
    build_claims,
    create_access_token,
    generate_refresh_token,
    hash_refresh_token,
    is_refresh_token_expired,
    validate_expired_access_token,
)
from config import AuthPolicy
from errors import (
    AuthenticationError,
    ExpiredRefreshTokenError,
    InvalidRefreshTokenError,
    InvalidTokenError,
    UserNotFoundError,
    ValidationError,
)
from identity import IdentityStore
from models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    access_token_expiry: datetime
    refresh_token: str
    refresh_token_expiry: datetime


class AuthSessionService:
    def __init__(self, db: AsyncSession, policy: AuthPolicy, identity: Optional[IdentityStore] = None):
        self.db = db
        self.policy = policy
        self.identity = identity or IdentityStore(db)

    async def issue(self, user: User, ip_address: Optional[str], now: Optional[datetime] = None) -> TokenPair:
        """Mint a token pair for `user` and store the refresh half (replacing any previous one)."""
        now = now or datetime.now(timezone.utc)
        user_id = user.id
        roles = await self.identity.get_roles(user)
        access, access_expiry = create_access_token(
            build_claims(user_id, user.username, roles, user.email), self.policy, now=now
        )
        raw_refresh = generate_refresh_token()
        refresh_expiry = now + timedelta(days=self.policy.refresh_expire_days)
        await crud.upsert_refresh_token(
            self.db,
            user_id=user_id,
            token_hash=hash_refresh_token(raw_refresh, self.policy),
            expires_at=refresh_expiry,
            created_by_ip=ip_address or "unknown",
            now=now,
        )
        return TokenPair(access, access_expiry, raw_refresh, refresh_expiry)

    async def login(self, username: str, password: str, ip_address: Optional[str] = None) -> TokenPair:
        if not username or not password:
            raise ValidationError("Username and password are required.")
        user = await self.identity.find_by_username(username)
        # same answer for unknown user and wrong password
        if user is None or not await self.identity.verify_password(user, password):
            logger.warning("Failed login for username %r", username)
            raise AuthenticationError("Invalid username or password.")
        user_id = user.id
        pair = await self.issue(user, ip_address)
        logger.info("User %s logged in", user_id)
        return pair

    async def refresh(self, access_token: Optional[str], refresh_token: Optional[str],
                      ip_address: Optional[str] = None, now: Optional[datetime] = None) -> TokenPair:
        now = now or datetime.now(timezone.utc)
        if not access_token or not refresh_token:
            raise ValidationError("Access token and refresh token are required.")

        claims = validate_expired_access_token(access_token, self.policy)
        if claims is None:
            logger.warning("Refresh rejected: invalid access token")
            raise InvalidTokenError()
        try:
            user_id = int(claims["sub"])
        except (KeyError, TypeError, ValueError):
            raise InvalidTokenError()

        user = await self.identity.find_by_id(user_id)
        if user is None:
            logger.warning("Refresh rejected: user %s not found", user_id)
            raise UserNotFoundError()

        stored = await crud.find_refresh_token(self.db, user.id, hash_refresh_token(refresh_token, self.policy))
        if stored is None:
            logger.warning("Refresh rejected for user %s: unknown refresh token", user.id)
            raise InvalidRefreshTokenError()
        if is_refresh_token_expired(stored.expires_at, now):
            logger.warning("Refresh rejected for user %s: refresh token expired", user.id)
            raise ExpiredRefreshTokenError()

        pair = await self.issue(user, ip_address, now=now)
        logger.info("User %s refreshed tokens", user_id)
        return pair
