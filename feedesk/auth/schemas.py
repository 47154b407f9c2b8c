from typing import Dict, Optional

from pydantic import BaseModel, Field

from feedesk.core.enums import CoachingRole

FEE_ADMIN_ROLES = (CoachingRole.OWNER.value, CoachingRole.ADMIN.value)


class CurrentUser(BaseModel):
    """Authenticated caller, decoded from the fee service's access token.

    ``coaching_roles`` maps coaching id to the caller's role there
    (OWNER | ADMIN | TEACHER | STUDENT | PARENT). ``token`` is forwarded
    unchanged on every upstream call.
    """

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    coaching_roles: Dict[str, str] = Field(default_factory=dict)
    token: str = Field(..., repr=False)

    def role_in(self, coaching_id: str) -> Optional[str]:
        return self.coaching_roles.get(coaching_id)

    def is_fee_admin(self, coaching_id: str) -> bool:
        return self.role_in(coaching_id) in FEE_ADMIN_ROLES
