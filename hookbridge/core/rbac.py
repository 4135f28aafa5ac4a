from fastapi import Depends, HTTPException, status

from hookbridge.core.auth import AuthUser, get_current_user


async def require_admin(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing role: ADMIN")
    return user
