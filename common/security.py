import time, jwt
from typing import Dict, Optional
from common.settings import settings

ALGO = "HS256"
AUDIENCE = "portal"

def mint_session_token(sub: str, access_token: str, claims: Optional[Dict] = None) -> str:
    """Wrap the backend access token in a signed, expiring session cookie value."""
    now = int(time.time())
    payload = {
        "iss": settings.session_issuer,
        "aud": AUDIENCE,
        "sub": sub,
        "iat": now,
        "exp": now + settings.session_ttl_seconds,
        "bat": access_token,
        **(claims or {}),
    }
    return jwt.encode(payload, settings.session_secret, algorithm=ALGO)

def verify_session_token(token: str) -> Dict:
    options = {"require": ["exp", "iat", "iss", "sub"]}
    return jwt.decode(
        token,
        settings.session_secret,
        algorithms=[ALGO],
        audience=AUDIENCE,
        options=options,
        issuer=settings.session_issuer,
    )

def read_session(token: Optional[str]) -> Optional[Dict]:
    """Local session lookup: claims of a valid cookie, or None."""
    if not token:
        return None
    try:
        return verify_session_token(token)
    except jwt.PyJWTError:
        return None
