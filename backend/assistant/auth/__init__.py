from assistant.auth.token import CurrentUser, TokenPayload, get_current_user, verify_token
from assistant.auth.rbac import AdminUser, has_role, require_role

__all__ = [
    "TokenPayload", "get_current_user", "verify_token", "CurrentUser",
    "require_role", "has_role", "AdminUser",
]
