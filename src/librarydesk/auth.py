from __future__ import annotations
import logging
from datetime import datetime
from typing import Optional, Dict, Any

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from librarydesk.errors import err
from librarydesk.models import LibraryUser, Role
from librarydesk.status import resolve_now

logger = logging.getLogger(__name__)

class Actor(BaseModel):
    id: str
    name: str | None = None
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

def require_role(actor: Optional[Actor], required_role: Role) -> Optional[Dict[str, Any]]:
    if actor is None:
        return err("Se requiere un usuario autenticado.", code="FORBIDDEN")
    if actor.role == Role.ADMIN or actor.role == required_role:
        return None
    logger.info("Acceso denegado: user=%s role=%s required=%s", actor.id, actor.role.value, required_role.value)
    return err("Se requiere acceso de administrador." if required_role == Role.ADMIN else "Acceso denegado.", code="FORBIDDEN")

async def remember_user(session: AsyncSession, actor: Actor, now: Optional[datetime] = None) -> LibraryUser:
    now = resolve_now(now)
    res = await session.execute(select(LibraryUser).where(LibraryUser.id == actor.id))
    user = res.scalar_one_or_none()
    if user is None:
        user = LibraryUser(id=actor.id, name=actor.name, role=actor.role, first_seen_at=now, last_seen_at=now)
        session.add(user)
    else:
        user.name = actor.name or user.name
        user.role = actor.role
        user.last_seen_at = now
    try:
        await session.commit()
    except IntegrityError:
        # otra petición del mismo usuario lo registró primero
        await session.rollback()
        res = await session.execute(select(LibraryUser).where(LibraryUser.id == actor.id))
        user = res.scalar_one()
    return user
