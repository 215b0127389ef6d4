from fastapi import HTTPException, Depends
from fastapi.security import OAuth2PasswordBearer
from app.config import settings
from app.schemas.session import UserSession
from httpx import AsyncClient, HTTPError
from structlog import get_logger

# Build login and verify URLs whether USER_MANAGEMENT_URL already includes '/api/v1' or not
_um_base = settings.USER_MANAGEMENT_URL.rstrip("/")
_has_v1 = _um_base.endswith("/api/v1")
_login_path = "/auth/login" if _has_v1 else "/api/v1/auth/login"
_verify_path = "/auth/verify" if _has_v1 else "/api/v1/auth/verify"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{_um_base}{_login_path}")
logger = get_logger()

def _user_id(user: dict):
    return user.get("id") or user.get("_id") or user.get("user_id") or user.get("sub") or user.get("uid")

async def get_current_user(token: str = Depends(oauth2_scheme)) -> UserSession:
    """Verify the bearer token with the user-management service.
    Tries a JSON POST first, then GET with the Authorization header.
    """
    try:
        async with AsyncClient(timeout=30.0) as client:
            resp = await client.post(f"{_um_base}{_verify_path}", json={"token": token})
            logger.info(
                "Verify attempt JSON",
                upstream=f"{_um_base}{_verify_path}",
                status_code=resp.status_code,
            )
            if resp.status_code in (400, 404, 405, 415, 422):
                resp = await client.get(
                    f"{_um_base}{_verify_path}",
                    headers={"Authorization": f"Bearer {token}"},
                )
                logger.info(
                    "Verify attempt GET Bearer",
                    upstream=f"{_um_base}{_verify_path}",
                    status_code=resp.status_code,
                )
    except HTTPError as e:
        logger.error("Verify request failed", upstream=f"{_um_base}{_verify_path}", error=str(e))
        raise HTTPException(status_code=502, detail="User service unavailable")

    if resp.status_code != 200:
        logger.warning("Verify failed", upstream=f"{_um_base}{_verify_path}", status_code=resp.status_code)
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        data = resp.json()
    except Exception:
        data = {}
    # Accept either {user: {...}} or flat {...}
    user = data.get("user", data) if isinstance(data, dict) else {}
    uid = _user_id(user) if isinstance(user, dict) else None
    if uid is None:
        logger.warning("Verify response without user id", upstream=f"{_um_base}{_verify_path}")
        raise HTTPException(status_code=401, detail="Invalid token")
    return UserSession(id=str(uid), token=token, email=user.get("email"))
