from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Header, HTTPException, status

from .errors import AccessDenied

ROLES = ("student", "admin")


@dataclass(frozen=True)
class SessionContext:
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def require_student_access(self, student_id: str) -> None:
        if not self.is_admin and self.user_id != student_id:
            raise AccessDenied("Students may only access their own data", student_id=student_id)

    def require_admin(self) -> None:
        if not self.is_admin:
            raise AccessDenied("Administrator role required", role=self.role)


def get_session_context(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> SessionContext:
    if not x_user_id or not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id and X-User-Role headers are required",
        )
    role = x_user_role.strip().lower()
    if role not in ROLES:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown role")
    return SessionContext(user_id=x_user_id.strip(), role=role)
