"""
Authentication Dependencies

Clerk is the identity provider. The only thing this service needs from it is
the signed-in user's id (the JWT ``sub`` claim); users are not stored here.

Usage:
    @router.get("/protected")
    def protected_endpoint(user_id: str = Depends(get_current_user_id)):
        return {"user_id": user_id}
"""

import os
import base64
import logging
import time
import threading
from typing import Optional, Tuple

import httpx
from fastapi import Depends, HTTPException, Header, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from jose.exceptions import JWKError

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

CLERK_ISSUER = os.getenv("CLERK_ISSUER")
CLERK_JWKS_URL = os.getenv("CLERK_JWKS_URL")
CLERK_AUDIENCE = os.getenv("CLERK_AUDIENCE")

# Where the frontend should send a visitor who is not signed in
SIGN_IN_URL = os.getenv("SIGN_IN_URL", "/auth/sign-in")

_jwks_cache: Tuple[Optional[dict], float] = (None, 0)
_jwks_lock = threading.Lock()
JWKS_CACHE_TTL_SECONDS = 3600
JWKS_MAX_STALE_SECONDS = 3600


def _jwks_url_from_publishable_key() -> Optional[str]:
    """
    Derive the JWKS URL from a Clerk publishable key.

    pk_test_<base64 frontend api host>$ -> https://<host>/.well-known/jwks.json
    """
    clerk_pub_key = os.getenv("NEXT_PUBLIC_CLERK_PUBLISHABLE_KEY", "")
    if not (clerk_pub_key.startswith("pk_test_") or clerk_pub_key.startswith("pk_live_")):
        return None

    key_part = clerk_pub_key.split("_", 2)[2]
    padding = 4 - len(key_part) % 4
    if padding != 4:
        key_part += "=" * padding
    try:
        host = base64.b64decode(key_part).decode("utf-8").rstrip("$")
    except (ValueError, UnicodeDecodeError) as e:
        logger.error(f"Failed to parse Clerk publishable key: {e}")
        return None
    return f"https://{host}/.well-known/jwks.json"


def get_clerk_jwks(force_refresh: bool = False) -> dict:
    """
    Fetch and cache Clerk's JWKS.

    Cached for an hour. If a refresh fails, a cached set up to an hour stale is
    still served so a Clerk blip does not sign everyone out.
    """
    global _jwks_cache
    cached_jwks, cache_time = _jwks_cache

    if not force_refresh and cached_jwks is not None:
        if time.time() - cache_time < JWKS_CACHE_TTL_SECONDS:
            return cached_jwks

    with _jwks_lock:
        # Another thread may have refreshed while we waited
        cached_jwks, cache_time = _jwks_cache
        cache_age = time.time() - cache_time
        if not force_refresh and cached_jwks is not None and cache_age < JWKS_CACHE_TTL_SECONDS:
            return cached_jwks

        jwks_url = CLERK_JWKS_URL or _jwks_url_from_publishable_key()
        if not jwks_url:
            logger.error("No JWKS URL configured for Clerk")
            return {"keys": []}

        try:
            response = httpx.get(jwks_url, timeout=10.0)
            response.raise_for_status()
            jwks = response.json()
            _jwks_cache = (jwks, time.time())
            logger.debug("JWKS cache refreshed successfully")
            return jwks
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch Clerk JWKS: {e}")
            if cached_jwks is not None and cache_age < JWKS_MAX_STALE_SECONDS:
                logger.warning(f"Returning stale JWKS cache (age: {cache_age:.0f}s) due to fetch failure")
                return cached_jwks
            return {"keys": []}


def _find_key(jwks: dict, kid: str) -> Optional[dict]:
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key
    return None


def verify_clerk_jwt(token: str) -> dict:
    """
    Verify a Clerk session token and return its claims.

    Raises:
        HTTPException: 401 if the token is malformed, unsigned by Clerk or expired
    """
    try:
        kid = jwt.get_unverified_header(token).get("kid")
        if not kid:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token missing key ID"
            )

        rsa_key = _find_key(get_clerk_jwks(), kid)
        if not rsa_key:
            # Clerk may have rotated keys
            rsa_key = _find_key(get_clerk_jwks(force_refresh=True), kid)
        if not rsa_key:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unable to find appropriate key"
            )

        decode_kwargs = {"algorithms": ["RS256"]}
        options = {}
        if CLERK_AUDIENCE:
            decode_kwargs["audience"] = CLERK_AUDIENCE
        else:
            options["verify_aud"] = False
        if CLERK_ISSUER:
            decode_kwargs["issuer"] = CLERK_ISSUER
        if options:
            decode_kwargs["options"] = options

        return jwt.decode(token, rsa_key, **decode_kwargs)

    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )
    except JWKError as e:
        logger.error(f"JWK error: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token verification failed"
        )


def _not_signed_in(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer", "X-Sign-In-Url": SIGN_IN_URL}
    )


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    authorization: Optional[str] = Header(None)
) -> str:
    """
    FastAPI dependency returning the signed-in Clerk user id.

    A missing or invalid token is a 401 carrying ``X-Sign-In-Url`` so the
    frontend can send the visitor to sign in.
    """
    token = None
    if credentials:
        token = credentials.credentials
    elif authorization and authorization.startswith("Bearer "):
        token = authorization[7:]

    if not token:
        raise _not_signed_in("Not authenticated")

    try:
        claims = verify_clerk_jwt(token)
    except HTTPException as e:
        raise _not_signed_in(e.detail)

    user_id = claims.get("sub")
    if not user_id:
        raise _not_signed_in("Invalid token claims")

    return user_id


async def get_current_user_id_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    authorization: Optional[str] = Header(None)
) -> Optional[str]:
    """Like get_current_user_id, but None when not signed in."""
    try:
        return await get_current_user_id(credentials, authorization)
    except HTTPException:
        return None
