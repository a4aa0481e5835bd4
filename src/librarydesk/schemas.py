from decimal import Decimal
from typing import Annotated
from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel
from datetime import datetime

# JSON en camelCase; los atributos de Python siguen en snake_case
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

class BookIn(CamelModel):
    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    category: str = Field(min_length=1)
    price: Decimal = Field(ge=0)
    total_copies: int = Field(default=1, ge=1)
    available_copies: int | None = Field(default=None, ge=0)
    isbn: str | None = None
    description: str | None = None
    cover_image_url: str | None = None
    rating: Decimal | None = Field(default=None, ge=0, le=5)

class BookUpdate(CamelModel):
    title: str | None = Field(default=None, min_length=1)
    author: str | None = Field(default=None, min_length=1)
    category: str | None = Field(default=None, min_length=1)
    price: Decimal | None = Field(default=None, ge=0)
    total_copies: int | None = Field(default=None, ge=1)
    available_copies: int | None = Field(default=None, ge=0)
    isbn: str | None = None
    description: str | None = None
    cover_image_url: str | None = None
    rating: Decimal | None = Field(default=None, ge=0, le=5)

class BookOut(CamelModel):
    id: str
    title: str
    author: str
    isbn: str | None
    category: str
    description: str | None
    cover_image_url: str | None
    price: Decimal
    total_copies: int
    available_copies: int
    rating: Decimal | None
    stock_status: str
    created_at: datetime | None = None

class BookDeletedOut(CamelModel):
    detail: str
    book_id: str
    orphaned_loans: int

class BorrowIn(CamelModel):
    book_id: str

class LoanOut(CamelModel):
    id: str
    user_id: str
    book_id: str
    status: str
    borrowed_at: datetime
    due_date: datetime
    returned_at: datetime | None
    renewed_cnt: int
    display_status: str | None
    days_remaining: int | None
    book: BookOut | None

class RenewalIn(CamelModel):
    new_due_date: datetime | None = None

class LoanReturnedOut(CamelModel):
    detail: str
    loan_id: str
    returned_at: datetime

class LoanRenewedOut(CamelModel):
    detail: str
    loan_id: str
    due_date: datetime

class PurchaseIn(CamelModel):
    book_id: str

class PurchaseOut(CamelModel):
    id: str
    user_id: str
    book_id: str
    price: Decimal
    purchased_at: datetime
    book: BookOut | None

class StatsOut(CamelModel):
    total_books: int
    total_users: int
    borrowed_today: int
    overdue: int
    revenue_today: Money

class ActorOut(CamelModel):
    id: str
    name: str | None
    role: str
