from __future__ import annotations
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, and_, or_, case
from sqlalchemy.exc import IntegrityError

from librarydesk.auth import Actor, require_role
from librarydesk.errors import ok, err
from librarydesk.models import Book, Loan, LoanStatus, Role
from librarydesk.status import stock_status

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {
    "title", "author", "isbn", "category", "description", "cover_image_url",
    "price", "total_copies", "available_copies", "rating",
}

def book_snapshot(b: Optional[Book]) -> Optional[Dict[str, Any]]:
    if b is None:
        return None
    return {
        "id": b.id,
        "title": b.title,
        "author": b.author,
        "isbn": b.isbn,
        "category": b.category,
        "description": b.description,
        "cover_image_url": b.cover_image_url,
        "price": b.price,
        "total_copies": b.total_copies,
        "available_copies": b.available_copies,
        "rating": b.rating,
        "stock_status": stock_status(b.available_copies, b.total_copies).value,
        "created_at": b.created_at,
    }

def _as_decimal(v: Any) -> Optional[Decimal]:
    try:
        d = Decimal(str(v))
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None

def _clean_str(v: Optional[str]) -> Optional[str]:
    return (v or "").strip() or None

_UNPARSABLE = object()

def _check_fields(fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    for name in ("title", "author", "category"):
        if name in fields and not fields[name]:
            return err(f"Falta el campo obligatorio '{name}'.", code="MISSING_FIELDS")
    if "price" in fields:
        price = fields["price"]
        if price is None or price is _UNPARSABLE or price < 0:
            return err("El precio debe ser un número mayor o igual a 0.", code="INVALID_PRICE")
    if "rating" in fields and fields["rating"] is not None:
        rating = fields["rating"]
        if rating is _UNPARSABLE or not (Decimal("0") <= rating <= Decimal("5")):
            return err("La calificación debe estar entre 0 y 5.", code="INVALID_RATING")
    return None

def _normalize(raw: Dict[str, Any]) -> Dict[str, Any]:
    fields = dict(raw)
    for name in ("title", "author", "category", "isbn", "description", "cover_image_url"):
        if name in fields:
            fields[name] = _clean_str(fields[name])
    for name in ("price", "rating"):
        if name in fields and fields[name] is not None:
            parsed = _as_decimal(fields[name])
            fields[name] = _UNPARSABLE if parsed is None else parsed
    return fields

async def find_book(
    session: AsyncSession, book_id: Optional[str], *, for_update: bool = False, refresh: bool = False
) -> Optional[Book]:
    if not book_id:
        return None
    q = select(Book).where(Book.id == book_id)
    if for_update:
        q = q.with_for_update()
    if for_update or refresh:
        # los UPDATE de copias no sincronizan la sesión; se relee la fila
        q = q.execution_options(populate_existing=True)
    return (await session.execute(q)).scalar_one_or_none()

async def _isbn_taken(session: AsyncSession, isbn: Optional[str], exclude_id: Optional[str] = None) -> bool:
    if not isbn:
        return False
    q = select(Book.id).where(Book.isbn == isbn)
    if exclude_id:
        q = q.where(Book.id != exclude_id)
    return (await session.execute(q)).first() is not None

async def get_book(session: AsyncSession, book_id: str) -> Dict[str, Any]:
    book = await find_book(session, book_id)
    if not book:
        return err("No encontré el libro solicitado.", code="BOOK_NOT_FOUND")
    return ok("Libro encontrado.", book=book_snapshot(book))

async def list_books(session: AsyncSession) -> Dict[str, Any]:
    books: List[Book] = (await session.execute(select(Book).order_by(Book.created_at.desc(), Book.title))).scalars().all()
    if not books:
        return ok("No hay libros registrados aún.", items=[])
    return ok("Listado de libros disponible.", items=[book_snapshot(b) for b in books])

async def search_books(session: AsyncSession, query: str) -> Dict[str, Any]:
    q = (query or "").strip()
    if not q:
        return await list_books(session)
    stmt = select(Book).where(
        or_(
            Book.title.icontains(q, autoescape=True),
            Book.author.icontains(q, autoescape=True),
            Book.category.icontains(q, autoescape=True),
        )
    )
    books = (await session.execute(stmt)).scalars().all()
    return ok(f"{len(books)} libro(s) coinciden con la búsqueda.", items=[book_snapshot(b) for b in books])

async def filter_books(session: AsyncSession, category: Optional[str] = None) -> Dict[str, Any]:
    if not category:
        return await list_books(session)
    books = (await session.execute(select(Book).where(Book.category == category))).scalars().all()
    return ok(f"{len(books)} libro(s) en la categoría.", items=[book_snapshot(b) for b in books])

async def create_book(
    session: AsyncSession, *, actor: Optional[Actor],
    title: str, author: str, category: str, price: Any,
    total_copies: int = 1, available_copies: Optional[int] = None,
    isbn: Optional[str] = None, description: Optional[str] = None,
    cover_image_url: Optional[str] = None, rating: Any = None,
) -> Dict[str, Any]:
    denied = require_role(actor, Role.ADMIN)
    if denied:
        return denied
    fields = _normalize(dict(
        title=title, author=author, category=category, price=price, isbn=isbn,
        description=description, cover_image_url=cover_image_url, rating=rating,
    ))
    problem = _check_fields(fields)
    if problem:
        return problem
    if total_copies is None or total_copies < 1:
        return err("El libro debe tener al menos una copia.", code="INVALID_COPIES")
    available = total_copies if available_copies is None else available_copies
    if not (0 <= available <= total_copies):
        return err("Las copias disponibles deben estar entre 0 y el total.", code="INVALID_COPIES")
    if await _isbn_taken(session, fields["isbn"]):
        return err("Ya existe un libro con ese ISBN.", code="ISBN_EXISTS")
    if fields["rating"] is None:
        fields["rating"] = Decimal("0")
    b = Book(total_copies=total_copies, available_copies=available, **fields)
    session.add(b)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        return err("Ya existe un libro con ese ISBN.", code="ISBN_EXISTS")
    await session.refresh(b)
    logger.info("Libro creado: id=%s title=%r copies=%s by=%s", b.id, b.title, b.total_copies, actor.id)
    return ok("Libro registrado exitosamente.", book=book_snapshot(b))

async def update_book(session: AsyncSession, *, actor: Optional[Actor], book_id: str, **changes) -> Dict[str, Any]:
    denied = require_role(actor, Role.ADMIN)
    if denied:
        return denied
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        return err(f"Campos no editables: {', '.join(sorted(unknown))}.", code="MISSING_FIELDS")
    book = await find_book(session, book_id, for_update=True)
    if not book:
        await session.rollback()
        return err("No encontré el libro solicitado.", code="BOOK_NOT_FOUND")
    fields = _normalize(changes)
    problem = _check_fields(fields)
    if problem:
        await session.rollback()
        return problem
    if "isbn" in fields and await _isbn_taken(session, fields["isbn"], exclude_id=book.id):
        await session.rollback()
        return err("Ya existe un libro con ese ISBN.", code="ISBN_EXISTS")

    total = fields.pop("total_copies", None)
    explicit_available = fields.pop("available_copies", None)
    new_total = book.total_copies if total is None else total
    if new_total < 1:
        await session.rollback()
        return err("El libro debe tener al menos una copia.", code="INVALID_COPIES")
    if explicit_available is not None:
        available = explicit_available
    elif new_total >= book.total_copies:
        # las copias nuevas llegan disponibles
        available = book.available_copies + (new_total - book.total_copies)
    else:
        available = min(book.available_copies, new_total)
    if not (0 <= available <= new_total):
        await session.rollback()
        return err("Las copias disponibles deben estar entre 0 y el total.", code="INVALID_COPIES")

    for name, value in fields.items():
        setattr(book, name, value)
    book.total_copies = new_total
    book.available_copies = available
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        return err("Ya existe un libro con ese ISBN.", code="ISBN_EXISTS")
    await session.refresh(book)
    logger.info("Libro actualizado: id=%s fields=%s by=%s", book.id, sorted(changes), actor.id)
    return ok("Libro actualizado exitosamente.", book=book_snapshot(book))

async def delete_book(session: AsyncSession, *, actor: Optional[Actor], book_id: str) -> Dict[str, Any]:
    denied = require_role(actor, Role.ADMIN)
    if denied:
        return denied
    book = await find_book(session, book_id)
    if not book:
        await session.rollback()
        return err("No encontré el libro solicitado.", code="BOOK_NOT_FOUND")
    active = await session.scalar(
        select(func.count()).select_from(Loan).where(and_(Loan.book_id == book_id, Loan.status == LoanStatus.BORROWED))
    )
    await session.execute(delete(Book).where(Book.id == book_id))
    await session.commit()
    if active:
        logger.warning("Libro %s eliminado con %s préstamo(s) activo(s)", book_id, active)
    logger.info("Libro eliminado: id=%s by=%s", book_id, actor.id)
    return ok("Libro eliminado exitosamente.", book_id=book_id, orphaned_loans=int(active or 0))

async def decrement_available(session: AsyncSession, book_id: str) -> Dict[str, Any]:
    # UPDATE condicional: sin filas afectadas = otra transacción tomó la última copia. No confirma.
    res = await session.execute(
        update(Book)
        .where(and_(Book.id == book_id, Book.available_copies > 0))
        .values(available_copies=Book.available_copies - 1)
        .execution_options(synchronize_session=False)
    )
    book = await find_book(session, book_id, refresh=True)
    if not book:
        return err("No encontré el libro solicitado.", code="BOOK_NOT_FOUND")
    if res.rowcount != 1:
        return err("No hay copias disponibles para ese libro.", code="NO_AVAILABLE_COPIES")
    return ok("Copia reservada.", book_id=book.id, available_copies=book.available_copies)

async def increment_available(session: AsyncSession, book_id: str) -> Dict[str, Any]:
    # tope en total_copies; no confirma
    res = await session.execute(
        update(Book)
        .where(Book.id == book_id)
        .values(available_copies=case(
            (Book.available_copies < Book.total_copies, Book.available_copies + 1),
            else_=Book.total_copies,
        ))
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        logger.warning("Devolución de un libro eliminado: book_id=%s", book_id)
        return ok("El libro ya no existe; no hay copias que actualizar.", book_id=book_id, updated=False)
    book = await find_book(session, book_id, refresh=True)
    return ok("Copia devuelta al inventario.", book_id=book_id, updated=True,
              available_copies=book.available_copies if book else None)
