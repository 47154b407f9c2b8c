from fastapi import Depends, HTTPException, status

from feedesk.auth.dependencies import get_current_user
from feedesk.auth.schemas import CurrentUser


async def require_coaching_member(
    coaching_id: str,
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Any role in the coaching named by the ``coaching_id`` path parameter."""
    if current_user.role_in(coaching_id) is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this coaching",
        )
    return current_user


async def require_fee_admin(
    coaching_id: str,
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Owner or admin of the coaching. Used on collect / waive / refund / structure writes."""
    if not current_user.is_fee_admin(coaching_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only coaching admins can manage fees",
        )
    return current_user
