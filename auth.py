import base64
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timezone, timedelta
from typing import Iterable, Optional, Tuple

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError
from passlib.context import CryptContext

from config import AuthPolicy, get_policy
from errors import AuthenticationError

logger = logging.getLogger(__name__)

REFRESH_TOKEN_BYTES = 64

# Argon2 via passlib. Conservative parameters; tune per hardware in production.
pwd_context = CryptContext(
    schemes=["argon2"],
    default="argon2",
    deprecated="auto",
    argon2__time_cost=2,
    argon2__memory_cost=65536,  # KiB (64 MB)
    argon2__parallelism=2,
)

# Plain HTTP Bearer: Swagger "Authorize" shows a single token input.
# auto_error is off so a missing header goes through our 401 envelope.
bearer_scheme = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def build_claims(user_id, username: str, roles: Iterable[str], email: Optional[str] = None) -> dict:
    """Identity claims carried by every access token."""
    claims = {"sub": str(user_id), "name": username, "roles": list(roles or [])}
    if email:
        claims["email"] = email
    return claims


def create_access_token(claims: dict, policy: AuthPolicy, now: Optional[datetime] = None) -> Tuple[str, datetime]:
    """Sign an HS256 access token.

    Returns the compact token and its expiry instant. Besides the identity
    claims the payload carries iss, aud, iat, exp and type='access'.
    """
    now = now or datetime.now(timezone.utc)
    expires_at = now + timedelta(minutes=policy.access_expire_minutes)
    payload = dict(claims)
    payload.update({
        "iss": policy.issuer,
        "aud": policy.audience,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    })
    return jwt.encode(payload, policy.secret_key, algorithm=policy.algorithm), expires_at


def generate_refresh_token() -> str:
    """64 random bytes, base64. Opaque: only the server can map it back to a user."""
    return base64.b64encode(secrets.token_bytes(REFRESH_TOKEN_BYTES)).decode("ascii")


def hash_refresh_token(raw: str, policy: AuthPolicy) -> str:
    """HMAC-SHA256 of a raw refresh token, hex. This is what gets stored."""
    return hmac.new(policy.refresh_token_secret.encode(), raw.encode(), hashlib.sha256).hexdigest()


def validate_expired_access_token(token: str, policy: AuthPolicy) -> Optional[dict]:
    """Return the claims of a correctly signed access token, expired or not.

    Used only by the refresh exchange. Anything malformed, signed with an
    algorithm other than HS256 (including "none"), carrying the wrong
    issuer/audience or not an access token yields None.
    """
    if not token:
        return None
    try:
        header = jwt.get_unverified_header(token)
    except JWTError:
        return None
    if str(header.get("alg", "")).upper() != policy.algorithm:
        return None
    try:
        claims = jwt.decode(
            token,
            policy.secret_key,
            algorithms=[policy.algorithm],
            audience=policy.audience,
            issuer=policy.issuer,
            options={"verify_exp": False},
        )
    except JWTError:
        return None
    if claims.get("type") != "access" or not claims.get("sub"):
        return None
    return claims


def is_refresh_token_expired(expires_at: datetime, now: Optional[datetime] = None) -> bool:
    """Expired strictly after the stored expiry instant."""
    now = now or datetime.now(timezone.utc)
    if expires_at.tzinfo is None:
        # sqlite hands back naive values; they are stored as UTC
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return now > expires_at


def decode_access_token(token: str, policy: AuthPolicy) -> dict:
    try:
        payload = jwt.decode(
            token,
            policy.secret_key,
            algorithms=[policy.algorithm],
            audience=policy.audience,
            issuer=policy.issuer,
        )
    except ExpiredSignatureError:
        raise AuthenticationError("access token expired")
    except JWTError:
        raise AuthenticationError("access token invalid")
    if payload.get("type") != "access":
        raise AuthenticationError("token invalid type")
    return payload


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    policy: AuthPolicy = Depends(get_policy),
):
    """FastAPI dependency: the authenticated principal.

    Stateless: the signed token alone decides. Returns a compact principal
    {"id": int, "username": str, "roles": [...]}.
    """
    if not credentials or not credentials.credentials:
        raise AuthenticationError("Not authenticated")
    payload = decode_access_token(credentials.credentials, policy)
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AuthenticationError("User ID could not be determined from the token.")
    return {"id": user_id, "username": payload.get("name"), "roles": list(payload.get("roles") or [])}
