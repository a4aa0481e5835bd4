import enum, uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    String, Integer, Enum, Text, Numeric, DateTime, CheckConstraint, Index, func, text
)
from sqlalchemy.orm import Mapped, mapped_column
from librarydesk.db import Base

class Role(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"

class LoanStatus(str, enum.Enum):
    BORROWED = "BORROWED"
    RETURNED = "RETURNED"

class Book(Base):
    __tablename__ = "book"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String, nullable=False, index=True)
    author: Mapped[str] = mapped_column(String, nullable=False, index=True)
    isbn: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    category: Mapped[str] = mapped_column(String, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    cover_image_url: Mapped[str | None] = mapped_column(String)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_copies: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    available_copies: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    rating: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("total_copies >= 1", name="book_total_copies_min"),
        CheckConstraint("available_copies >= 0", name="book_available_nonneg"),
        CheckConstraint("available_copies <= total_copies", name="book_available_le_total"),
        CheckConstraint("price >= 0", name="book_price_nonneg"),
    )

class Loan(Base):
    __tablename__ = "loan"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    # Sin FK: el préstamo conserva el id aunque el libro se elimine
    book_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    status: Mapped[LoanStatus] = mapped_column(Enum(LoanStatus, native_enum=False), default=LoanStatus.BORROWED, nullable=False)
    borrowed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    due_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    returned_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    renewed_cnt: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index(
            "uq_loan_active_user_book", "user_id", "book_id", unique=True,
            sqlite_where=text("status = 'BORROWED'"),
            postgresql_where=text("status = 'BORROWED'"),
        ),
    )

class Purchase(Base):
    __tablename__ = "purchase"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    book_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

class LibraryUser(Base):
    __tablename__ = "library_user"
    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str | None] = mapped_column(String)
    role: Mapped[Role] = mapped_column(Enum(Role, native_enum=False), default=Role.USER, nullable=False)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
