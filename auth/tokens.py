"""
auth/tokens.py -- JWT, password hashing, and opaque token utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (account id), iss, iat, exp, email and role. Verification returns
       None on any failure -- the request gate turns that into a 401. The
       cause (signature, expiry, issuer, shape) is logged at DEBUG only so the
       caller contract stays uniform.

  Passwords: bcrypt over base64(SHA-256(password)). bcrypt reads at most 72
       bytes and current releases raise on longer input; the digest is 44
       bytes whatever the password length, so every byte of a long password
       counts. DUMMY_HASH enables timing equalization on login so response
       time does not reveal whether an email exists.

  Opaque tokens (refresh + password reset): secrets.token_urlsafe(64) gives
       512 bits of entropy in the URL-safe alphabet without padding. We store
       HMAC-SHA256(SECRET_KEY, raw) so lookup is O(1) and a leaked DB does not
       yield usable tokens.

  SECRET_KEY: sourced from core.config.get_settings(), validated at startup.

Layer rule: no imports from api/ or notify/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.models import AccessClaims, Role
from core.config import get_settings

logger = logging.getLogger("authkit.auth.tokens")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_OPAQUE_TOKEN_BYTES = 64

# ---------------------------------------------------------------------------
# Password hashing (bcrypt over a SHA-256 digest, no passlib wrapper)
# ---------------------------------------------------------------------------


def _password_digest(plain: str) -> bytes:
    return base64.b64encode(hashlib.sha256(plain.encode("utf-8")).digest())


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    The password is reduced to a fixed 44-byte digest first, so length is
    limited only by the API layer (128 characters).
    """
    return bcrypt.hashpw(_password_digest(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_password_digest(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False



# Timing equalization dummy hash. Computed once at module load.
DUMMY_HASH: str = hash_password("authkit_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(account_id: int, email: str, role: Role | str, expires_in: int | None = None) -> str:
    """Encode a signed access token.

    Args:
        account_id: Numeric account id, stored as the string subject claim.
        email:      Account email, carried as a claim.
        role:       Account role, carried as a claim.
        expires_in: Lifetime in seconds. None uses Settings.access_token_expire_seconds.
    """
    duration = _settings.access_token_expire_seconds if expires_in is None else expires_in
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(account_id),
        "iss": _settings.jwt_issuer,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
        "email": email,
        "role": Role(role).value,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> AccessClaims | None:
    """Verify an access token. Returns its claims, or None on any failure.

    Expiry is checked against the wall clock at call time.
    """
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[_ALGORITHM],
            issuer=_settings.jwt_issuer,
            options={"require_exp": True, "require_iat": True, "require_sub": True},
        )
    except ExpiredSignatureError:
        logger.debug("Access token rejected: expired")
        return None
    except JWTClaimsError as exc:
        logger.debug("Access token rejected: claims (%s)", exc)
        return None
    except JWTError as exc:
        logger.debug("Access token rejected: %s", exc)
        return None

    try:
        return AccessClaims(
            account_id=int(payload["sub"]),
            email=str(payload["email"]),
            role=Role(payload["role"]),
        )
    except (KeyError, ValueError):
        logger.debug("Access token rejected: malformed subject, email or role claim")
        return None


# ---------------------------------------------------------------------------
# Opaque tokens
# ---------------------------------------------------------------------------


def generate_secure_token() -> str:
    """Return a URL-safe, unpadded random token with 512 bits of entropy."""
    return secrets.token_urlsafe(_OPAQUE_TOKEN_BYTES)


def hash_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string.

    Deterministic, so stores can look a token up by its hash through a
    UNIQUE index. Without SECRET_KEY the stored value cannot be turned back
    into a presentable token.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()
