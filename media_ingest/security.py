from fastapi import Depends, Header, HTTPException, status

from media_ingest.config import get_verified_user_ids


def require_verified_user(x_user_id: str | None = Header(default=None)) -> str | None:
    allowed_ids = get_verified_user_ids()
    if not allowed_ids:
        return x_user_id
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="x-user-id header is required")
    if x_user_id not in allowed_ids:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="user is not verified")
    return x_user_id


def require_owner(user_id: str | None = Depends(require_verified_user)) -> str:
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="x-user-id header is required")
    return user_id


def bearer_token(authorization: str | None = Header(default=None)) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
