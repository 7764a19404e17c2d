"""
Role-Based Access Control (RBAC)

Role hierarchy (highest → lowest privilege):
    SUPER_ADMIN > ADMIN > USER

Admin routes declare their minimum role with require_role():

    @router.post("/admin/documents/{document_id}/approve")
    async def approve(document_id: UUID, user: AdminUser): ...

A caller below the requirement gets PermissionDeniedError (403) and a
SECURITY_UNAUTHORIZED_ADMIN_ACCESS audit entry.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from assistant.api.deps import AppServices
from assistant.auth.token import TokenPayload, get_current_user
from assistant.core.errors import PermissionDeniedError
from assistant.models.enums import LogSeverity, UserRole

# ---------------------------------------------------------------------------
# Role ordering — higher value = more privilege
# ---------------------------------------------------------------------------

_ROLE_ORDER: dict[UserRole, int] = {
    UserRole.USER:        0,
    UserRole.ADMIN:       1,
    UserRole.SUPER_ADMIN: 2,
}


def has_role(user_role: UserRole, required_role: UserRole) -> bool:
    """Return True if user_role meets or exceeds required_role."""
    return _ROLE_ORDER.get(user_role, -1) >= _ROLE_ORDER[required_role]


# ---------------------------------------------------------------------------
# Dependency factory
# ---------------------------------------------------------------------------

def require_role(minimum_role: UserRole):
    async def _dependency(
        request:  Request,
        user:     Annotated[TokenPayload, Depends(get_current_user)],
        services: AppServices,
    ) -> TokenPayload:
        if not has_role(user.role, minimum_role):
            await services.audit.log_security(
                "UNAUTHORIZED_ADMIN_ACCESS",
                LogSeverity.WARN,
                user_id=user.sub,
                metadata={"path": request.url.path, "role": user.role.value},
            )
            raise PermissionDeniedError(
                f"Insufficient permissions. Required: '{minimum_role.value}', "
                f"your role: '{user.role.value}'."
            )
        return user

    return _dependency


AdminUser = Annotated[TokenPayload, Depends(require_role(UserRole.ADMIN))]
