from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status

from docchat.config.settings import AuthMode, settings


@dataclass
class Principal:
    """Represents the operator calling the admin endpoints."""

    user_id: str
    roles: list[str]

    @property
    def is_operator(self) -> bool:
        return "operator" in self.roles or "admin" in self.roles


async def get_principal(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_roles: str | None = Header(None, alias="X-Roles"),
) -> Principal:
    """
    Dependency injection function to get the current principal.

    Behavior based on AUTH_MODE:
    - none: Returns the dev operator with admin role
    - dev: Trusts X-User-ID / X-Roles set by an authenticating proxy
    """
    if settings.auth_mode == AuthMode.NONE:
        return Principal(user_id=settings.dev_user_id, roles=["admin"])
    elif settings.auth_mode == AuthMode.DEV:
        if not x_user_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="X-User-ID header is required in dev auth mode",
            )

        roles = [role.strip() for role in (x_roles or "").split(",") if role.strip()]
        return Principal(user_id=x_user_id, roles=roles)
    else:
        raise ValueError(f"Unknown auth mode: {settings.auth_mode}")


async def require_operator(
    principal: Principal = Depends(get_principal),
) -> Principal:
    """Reject callers without an operator or admin role."""
    if not principal.is_operator:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Operator role required",
        )
    return principal


# Convenience type alias for dependency injection
OperatorDep = Depends(require_operator)
