from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.session import get_db
from app.models.user import User


bearer = HTTPBearer(auto_error=False)


@dataclass(slots=True)
class AuthUser:
    user_id: int
    email: str
    display_name: str
    roles: list[str]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _decode_token(token: str) -> dict[str, Any]:
    """Verify signature, expiry and, when configured, issuer and audience."""
    options = {"require": ["sub"], "verify_aud": bool(settings.jwt_audience)}
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience or None,
            issuer=settings.jwt_issuer or None,
            leeway=settings.jwt_exp_leeway_seconds,
            options=options,
        )
    except jwt.PyJWTError as exc:
        raise _unauthorized("Invalid token") from exc


def _claim_roles(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    return [role for role in (str(item).strip().lower() for item in raw) if role]


def _parse_payload(payload: dict[str, Any]) -> AuthUser:
    subject = payload.get("sub", payload.get("user_id"))
    if isinstance(subject, bool) or subject is None or not str(subject).strip().isdigit():
        raise _unauthorized("Token subject must be a numeric user id")
    user_id = int(str(subject).strip())

    email = str(payload.get("email") or "").strip().lower()
    return AuthUser(
        user_id=user_id,
        email=email,
        display_name=str(payload.get("display_name") or payload.get("name") or email or user_id),
        roles=_claim_roles(payload.get("roles")),
    )


async def _sync_user(db: AsyncSession, user: AuthUser) -> User:
    # The identity provider stays the source of truth for email, name and roles.
    row = (await db.execute(select(User).where(User.id == user.user_id))).scalar_one_or_none()
    email = user.email or f"user-{user.user_id}@users.invalid"
    if row is None:
        row = User(id=user.user_id, email=email, display_name=user.display_name, roles=user.roles)
        db.add(row)
    else:
        if row.email != email:
            row.email = email
        if row.display_name != user.display_name:
            row.display_name = user.display_name
        if user.roles and row.roles != user.roles:
            row.roles = user.roles
    if db.new or db.dirty:
        await db.commit()
        await db.refresh(row)
    return row


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    payload = _decode_token(credentials.credentials)
    return await _sync_user(db, _parse_payload(payload))


def require_admin(user: User) -> None:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin only")


def ensure_self_or_admin(actor: User, target_user_id: int) -> None:
    if actor.id == target_user_id or actor.is_admin:
        return
    raise HTTPException(status_code=403, detail="Forbidden")
