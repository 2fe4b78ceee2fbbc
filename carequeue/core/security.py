"""Actor token helpers.

Tokens are issued by the external authentication service; this module only
needs to mint them for local tooling/tests and to verify incoming ones.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from carequeue.core.config import settings


def create_access_token(
    subject: str,
    actor_type: str,
    expires_delta: timedelta | None = None,
    additional_claims: dict | None = None,
) -> str:
    """Create a signed actor token.

    Args:
        subject: Actor ID (patient, doctor or staff user ID)
        actor_type: One of patient, doctor, clinic, admin, system
        expires_delta: Optional custom expiration time
        additional_claims: Optional additional claims to include

    Returns:
        Encoded JWT token string
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)

    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": subject,
        "actor_type": actor_type,
        "exp": now + expires_delta,
        "iat": now,
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate an actor token.

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
