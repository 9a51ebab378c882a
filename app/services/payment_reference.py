"""Payment reference codes and UPI deep links.

Payments are manual UPI transfers: the member scans a QR encoding a
``upi://pay`` link whose transaction note is the record's reference, so the
treasurer can match bank entries to records by eye.
"""
import re
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Optional
from urllib.parse import urlencode
from uuid import UUID

from app.core.clock import utcnow

REFERENCE_PATTERN = re.compile(r"^AT-(?P<type>[A-Z]+)-(?P<period>\d{6})-(?P<user>[A-Z0-9]{6})-(?P<date>\d{8})(?P<suffix>[A-F0-9]{4})$")
UPI_ID_PATTERN = re.compile(r"^[a-zA-Z0-9.\-_]{2,256}@[a-zA-Z]{2,64}$")


def generate_payment_reference(member_id: UUID, month_number: int, year: int, fund_type: str = "FUND", now: Optional[datetime] = None) -> str:
    """e.g. AT-FUND-032025-9F2C1A-20250301B7E4"""
    now = now or utcnow()
    short_user = UUID(str(member_id)).hex[-6:].upper()
    suffix = secrets.token_hex(2).upper()
    return f"AT-{fund_type}-{month_number:02d}{year}-{short_user}-{now.strftime('%Y%m%d')}{suffix}"


def validate_payment_reference(reference: str) -> bool:
    return bool(reference) and REFERENCE_PATTERN.match(reference) is not None


def is_valid_upi_id(upi_id: str) -> bool:
    return bool(upi_id) and UPI_ID_PATTERN.match(upi_id.strip()) is not None


def generate_upi_url(upi_id: str, amount, reference: str, name: str = "AuroraTreasury") -> str:
    """NPCI UPI deep link with the reference as transaction note."""
    if not upi_id or amount is None or not reference:
        raise ValueError("UPI ID, amount, and reference are required")
    params = {
        "pa": upi_id,
        "pn": name,
        "am": str(Decimal(str(amount)).quantize(Decimal("0.01"))),
        "cu": "INR",
        "tn": reference,
    }
    return f"upi://pay?{urlencode(params)}"


def build_qr_payload(record, upi_id: str, payee_name: Optional[str] = None, member=None) -> dict:
    """Everything the client needs to render the payment QR for a record."""
    label = f"{record.month} {record.year} Group Fund"
    return {
        "reference": record.payment_reference,
        "upi_url": generate_upi_url(upi_id, record.amount, record.payment_reference, name=payee_name or "AuroraTreasury"),
        "upi_id": upi_id,
        "payee_name": payee_name,
        "amount": record.amount,
        "fund_name": label,
        "member_name": member.name if member else None,
        "member_usn": member.usn if member else None,
        "deadline": record.deadline,
    }
