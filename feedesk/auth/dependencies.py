from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from feedesk.auth.schemas import CurrentUser
from feedesk.core.config import settings


bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> CurrentUser:
    """Resolve the caller from the bearer token issued by the fee service."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or not credentials.credentials:
        raise credentials_exception

    token = credentials.credentials
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise credentials_exception

    user_id = payload.get("userId") or payload.get("sub")
    if not user_id:
        raise credentials_exception

    roles = payload.get("coachingRoles") or {}
    if not isinstance(roles, dict):
        raise credentials_exception

    return CurrentUser(
        id=str(user_id),
        name=payload.get("name"),
        email=payload.get("email"),
        phone=payload.get("phone"),
        coaching_roles={str(k): str(v).upper() for k, v in roles.items()},
        token=token,
    )
