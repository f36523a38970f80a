"""Sequential document numbers: CR/PR + YYYYMMDD + 4-digit sequence, CS + YYYYMM + sequence."""
from datetime import date
from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session


def next_document_no(db: Session, column, prefix: str) -> str:
    """Next number for ``prefix`` based on the highest existing value of ``column``.

    The sequence is zero-padded to 4 digits and grows past 9999, so the highest
    value is the longest one first, then the greatest.
    """
    last = (
        db.query(column)
        .filter(column.like(f"{prefix}%"))
        .order_by(func.length(column).desc(), column.desc())
        .first()
    )
    seq = 1
    if last and last[0]:
        try:
            seq = int(last[0][len(prefix):]) + 1
        except ValueError:
            seq = 1
    return f"{prefix}{seq:04d}"


def daily_prefix(code: str, today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{code}{today.strftime('%Y%m%d')}"


def monthly_prefix(code: str, month: str) -> str:
    return f"{code}{month.replace('-', '')}"
