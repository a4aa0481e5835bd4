from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError

from librarydesk.auth import Actor, require_role
from librarydesk.config import settings
from librarydesk.errors import ok, err
from librarydesk.ledger import find_book, book_snapshot, decrement_available, increment_available
from librarydesk.models import Book, Loan, LoanStatus, Role
from librarydesk.status import resolve_now, as_local_naive, loan_status, days_remaining

logger = logging.getLogger(__name__)

def loan_view(loan: Loan, book: Optional[Book], now: datetime) -> Dict[str, Any]:
    active = loan.status == LoanStatus.BORROWED
    return {
        "id": loan.id,
        "user_id": loan.user_id,
        "book_id": loan.book_id,
        "status": loan.status.value,
        "borrowed_at": loan.borrowed_at,
        "due_date": loan.due_date,
        "returned_at": loan.returned_at,
        "renewed_cnt": loan.renewed_cnt,
        "display_status": loan_status(loan.due_date, now).value if active else None,
        "days_remaining": days_remaining(loan.due_date, now) if active else None,
        "book": book_snapshot(book),
    }

async def _find_loan(session: AsyncSession, loan_id: Optional[str], *, for_update: bool = False) -> Optional[Loan]:
    if not loan_id:
        return None
    q = select(Loan).where(Loan.id == loan_id)
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    return (await session.execute(q)).scalar_one_or_none()

async def _active_loan(session: AsyncSession, user_id: str, book_id: str) -> Optional[Loan]:
    r = await session.execute(
        select(Loan).where(
            and_(Loan.user_id == user_id, Loan.book_id == book_id, Loan.status == LoanStatus.BORROWED)
        )
    )
    return r.scalars().first()

def _owner_check(loan: Loan, actor: Optional[Actor]) -> Optional[Dict[str, Any]]:
    if actor is None or actor.is_admin or loan.user_id == actor.id:
        return None
    return err("Ese préstamo pertenece a otro usuario.", code="NOT_LOAN_OWNER")

async def borrow(session: AsyncSession, *, user_id: str, book_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    if not (user_id and book_id):
        return err("Faltan datos para el préstamo (user_id, book_id).", code="MISSING_FIELDS")
    now = resolve_now(now)
    book = await find_book(session, book_id)
    if not book:
        await session.rollback()
        return err("No encontré el libro solicitado.", code="BOOK_NOT_FOUND")
    if await _active_loan(session, user_id, book_id):
        await session.rollback()
        logger.info("Préstamo rechazado: user=%s book=%s ALREADY_BORROWED", user_id, book_id)
        return err("Ya tienes este libro en préstamo.", code="ALREADY_BORROWED")
    r = await decrement_available(session, book_id)
    if not r["ok"]:
        await session.rollback()
        logger.info("Préstamo rechazado: user=%s book=%s %s", user_id, book_id, r["code"])
        return r
    loan = Loan(
        user_id=user_id, book_id=book_id, status=LoanStatus.BORROWED,
        borrowed_at=now, due_date=now + timedelta(days=settings.LOAN_DAYS),
    )
    session.add(loan)
    try:
        await session.commit()
    except IntegrityError:
        # préstamo duplicado concurrente; el rollback deshace también el descuento
        await session.rollback()
        return err("Ya tienes este libro en préstamo.", code="ALREADY_BORROWED")
    logger.info("Préstamo creado: loan=%s user=%s book=%s due=%s", loan.id, user_id, book_id, loan.due_date.isoformat())
    return ok("El préstamo se realizó exitosamente.", loan=loan_view(loan, book, now))

async def return_loan(
    session: AsyncSession, *, loan_id: str, actor: Optional[Actor] = None, now: Optional[datetime] = None
) -> Dict[str, Any]:
    now = resolve_now(now)
    loan = await _find_loan(session, loan_id, for_update=True)
    if not loan:
        await session.rollback()
        return err("No encontré el préstamo indicado.", code="LOAN_NOT_FOUND")
    denied = _owner_check(loan, actor)
    if denied:
        await session.rollback()
        return denied
    if loan.status == LoanStatus.RETURNED:
        await session.rollback()
        return err("Ese préstamo ya fue devuelto.", code="ALREADY_RETURNED")
    loan.status = LoanStatus.RETURNED
    loan.returned_at = now
    await increment_available(session, loan.book_id)
    await session.commit()
    logger.info("Préstamo devuelto: loan=%s book=%s", loan.id, loan.book_id)
    return ok("Libro devuelto exitosamente.", loan_id=loan.id, returned_at=loan.returned_at.isoformat())

async def renew(
    session: AsyncSession, *, loan_id: str, new_due_date: Optional[datetime] = None, actor: Optional[Actor] = None
) -> Dict[str, Any]:
    loan = await _find_loan(session, loan_id, for_update=True)
    if not loan:
        await session.rollback()
        return err("No encontré el préstamo indicado.", code="LOAN_NOT_FOUND")
    denied = _owner_check(loan, actor)
    if denied:
        await session.rollback()
        return denied
    if loan.status == LoanStatus.RETURNED:
        await session.rollback()
        return err("Ese préstamo ya fue devuelto, no se puede renovar.", code="ALREADY_RETURNED")
    if new_due_date is None:
        new_due_date = loan.due_date + timedelta(days=settings.LOAN_DAYS)
    new_due_date = as_local_naive(new_due_date)
    if new_due_date <= loan.due_date:
        await session.rollback()
        return err("La nueva fecha debe ser posterior a la fecha de vencimiento actual.", code="INVALID_DUE_DATE")
    loan.due_date = new_due_date
    loan.renewed_cnt += 1
    await session.commit()
    logger.info("Préstamo renovado: loan=%s due=%s", loan.id, loan.due_date.isoformat())
    return ok("El préstamo fue renovado exitosamente.", loan_id=loan.id, due_date=loan.due_date.isoformat())

async def list_for_user(session: AsyncSession, *, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = resolve_now(now)
    rows = (await session.execute(
        select(Loan, Book)
        .outerjoin(Book, Book.id == Loan.book_id)
        .where(and_(Loan.user_id == user_id, Loan.status == LoanStatus.BORROWED))
        .order_by(Loan.borrowed_at.desc())
    )).all()
    return ok("Préstamos activos.", items=[loan_view(loan, book, now) for loan, book in rows])

async def list_overdue(session: AsyncSession, *, actor: Optional[Actor], now: Optional[datetime] = None) -> Dict[str, Any]:
    denied = require_role(actor, Role.ADMIN)
    if denied:
        return denied
    now = resolve_now(now)
    rows = (await session.execute(
        select(Loan, Book)
        .outerjoin(Book, Book.id == Loan.book_id)
        .where(and_(Loan.status == LoanStatus.BORROWED, Loan.due_date < now))
        .order_by(Loan.due_date)
    )).all()
    return ok(f"{len(rows)} préstamo(s) vencido(s).", items=[loan_view(loan, book, now) for loan, book in rows])
