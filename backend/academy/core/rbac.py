from __future__ import annotations

from typing import Iterable

from fastapi import HTTPException, status

from academy.models.enums import Role


def user_has_any_role(user, roles: Iterable[Role]) -> bool:
    return user is not None and user.role in set(roles)


def require_roles(user, required_roles: Iterable[Role]) -> None:
    """
    Require that the user has at least one of the specified roles.
    Raises HTTPException with 403 status if user doesn't have required roles.
    """
    required_roles = list(required_roles)
    if not user_has_any_role(user, required_roles):
        role_names = ", ".join(role.value for role in required_roles)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied. Required roles: {role_names}",
        )


def require_academy_id(user) -> int:
    """Tenant id of the acting user; platform users without one cannot act on tenant data."""
    if user.academy_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No academy context for this user",
        )
    return user.academy_id
