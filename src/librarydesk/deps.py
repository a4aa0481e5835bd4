from typing import AsyncGenerator, Optional
from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from librarydesk.db import SessionLocal
from librarydesk.auth import Actor, Role, remember_user, require_role

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session

async def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> Actor:
    # La identidad la resuelve el proveedor externo; aquí solo se lee.
    if not (x_user_id or "").strip():
        raise HTTPException(status_code=401, detail="Se requiere autenticación.")
    role = (x_user_role or Role.USER.value).strip().lower()
    if role not in {r.value for r in Role}:
        raise HTTPException(status_code=401, detail="Rol desconocido.")
    actor = Actor(id=x_user_id.strip(), name=(x_user_name or "").strip() or None, role=Role(role))
    await remember_user(session, actor)
    return actor

async def get_admin(actor: Actor = Depends(get_actor)) -> Actor:
    # corre antes de validar el cuerpo: 403 aunque el payload sea inválido
    denied = require_role(actor, Role.ADMIN)
    if denied:
        raise HTTPException(status_code=403, detail={"message": denied["message"], "code": denied["code"]})
    return actor
