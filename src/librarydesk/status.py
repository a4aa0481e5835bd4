from __future__ import annotations
import enum
import math
from datetime import datetime, timedelta
from typing import Optional, Tuple

from librarydesk.config import settings

DAY = timedelta(days=1)

class LoanDisplayStatus(str, enum.Enum):
    OVERDUE = "Overdue"
    DUE_SOON = "Due Soon"
    ON_TIME = "On Time"

class StockStatus(str, enum.Enum):
    OUT_OF_STOCK = "Out of Stock"
    LOW_STOCK = "Low Stock"
    AVAILABLE = "Available"

def reference_now() -> datetime:
    # Hora local del servidor, sin zona; los "hoy" de las estadísticas parten de aquí.
    return datetime.now().replace(microsecond=0)

def resolve_now(now: Optional[datetime]) -> datetime:
    return now if now is not None else reference_now()

def as_local_naive(value: datetime) -> datetime:
    # Las fechas se guardan en hora local sin zona
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)

def days_remaining(due_date: datetime, now: datetime) -> int:
    return math.ceil((due_date - now) / DAY)

def loan_status(due_date: datetime, now: datetime, *, due_soon_days: Optional[int] = None) -> LoanDisplayStatus:
    threshold = settings.DUE_SOON_DAYS if due_soon_days is None else due_soon_days
    days = days_remaining(due_date, now)
    if days < 0:
        return LoanDisplayStatus.OVERDUE
    if days <= threshold:
        return LoanDisplayStatus.DUE_SOON
    return LoanDisplayStatus.ON_TIME

def is_overdue(due_date: datetime, now: datetime) -> bool:
    return due_date < now

def stock_status(available: int, total: int, *, low_ratio: Optional[float] = None) -> StockStatus:
    ratio = settings.LOW_STOCK_RATIO if low_ratio is None else low_ratio
    if available <= 0:
        return StockStatus.OUT_OF_STOCK
    if available <= total * ratio:
        return StockStatus.LOW_STOCK
    return StockStatus.AVAILABLE

def day_window(now: datetime) -> Tuple[datetime, datetime]:
    # [medianoche local, medianoche siguiente)
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + DAY
