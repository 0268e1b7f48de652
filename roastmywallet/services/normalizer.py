"""
Transaction normalizer.

Turns one uploaded artifact (receipt image, CSV text, PDF statement or a
statement photo) into NormalizedTransaction records with integer cents.
"""

import base64
import binascii
import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

import pdfplumber

from ..config import settings
from ..errors import UpstreamError, ValidationFailed
from ..models import CATEGORIES, DEFAULT_CATEGORY
from ..utils import coerce_cents, dollars_to_cents, parse_date, utcnow
from . import llm_service, roast_service

logger = logging.getLogger("roastmywallet.services.normalizer")

DATE_HEADER_KEYS = ("date",)
DESCRIPTION_HEADER_KEYS = ("desc", "merchant", "name", "narration")
AMOUNT_HEADER_KEYS = ("amount", "debit", "credit")

UNKNOWN_DESCRIPTION = "Unknown"

RECEIPT_PROMPT = (
    "You are a sassy, mildly judgmental financial assistant. You analyze a photo of a "
    "receipt and extract the total amount in cents (integer), a short description, the "
    "date of purchase (ISO string) and a category from this list: "
    + ", ".join(CATEGORIES) + ". "
    "Most importantly, you write a roast of the purchase in this voice: {tone}\n"
    "Respond with JSON in this format: "
    '{{"amount": 1250, "description": "Starbucks Coffee", "date": "2023-10-15T08:30:00Z", '
    '"category": "Food & Drink", "roast": "Wow, $12.50 for bean water?"}}'
)

STATEMENT_PROMPT = (
    "You extract spending transactions from bank statements. "
    "Return ONLY a JSON array of objects with keys: description (merchant or payee, short), "
    "amount (positive number in dollars), date (ISO date YYYY-MM-DD). "
    "Include only money going out: purchases, bills, fees, withdrawals. "
    "Exclude refunds, deposits, salary, interest earned and transfers in. "
    'Example: [{"description": "Starbucks", "amount": 6.5, "date": "2024-01-15"}]'
)

CATEGORY_PROMPT = (
    "Classify the purchase into exactly one of these categories: "
    + ", ".join(CATEGORIES) + ". "
    'Respond ONLY with JSON: {"category": "<one of the categories>"}'
)


class StatementFormat(str, Enum):
    CSV = "csv"
    PDF = "pdf"
    IMAGE = "image"


@dataclass
class NormalizedTransaction:
    description: str
    amount_cents: int
    date: datetime
    category: Optional[str] = None


@dataclass
class NormalizeResult:
    transactions: List[NormalizedTransaction] = field(default_factory=list)
    skipped: int = 0


@dataclass
class ReceiptExtraction:
    amount_cents: int
    description: str
    date: datetime
    category: str
    roast: str


_CATEGORY_LOOKUP = {name.lower(): name for name in CATEGORIES}


def coerce_category(value) -> str:
    if not isinstance(value, str):
        return DEFAULT_CATEGORY
    return _CATEGORY_LOOKUP.get(value.strip().lower(), DEFAULT_CATEGORY)


def classify_category(description: str, amount_cents: int) -> str:
    """Constrained model call; anything unexpected becomes the default category."""
    result = llm_service.request_json(
        CATEGORY_PROMPT,
        f"Purchase: {description}\nAmount: ${amount_cents / 100:,.2f}",
        temperature=0,
        max_tokens=50,
    )
    data = result.value_or({})
    if isinstance(data, dict):
        return coerce_category(data.get("category"))
    if isinstance(data, str):
        return coerce_category(data)
    return DEFAULT_CATEGORY


def as_image_url(image: str) -> str:
    """Accept a data URL, an http(s) URL or bare base64 and return something the model can fetch."""
    if not image or not image.strip():
        raise ValidationFailed("Image is required", field="image")
    image = image.strip()
    if image.startswith(("data:image/", "http://", "https://")):
        return image
    try:
        base64.b64decode(image, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationFailed("Image must be a data URL or base64 encoded", field="image")
    return f"data:image/jpeg;base64,{image}"


def decode_base64_payload(data: str, field_name: str = "data") -> bytes:
    if not data:
        raise ValidationFailed("File data is required", field=field_name)
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationFailed("File data must be base64 encoded", field=field_name)


def extract_receipt(image: str, tone: Optional[str] = None) -> ReceiptExtraction:
    """One vision call for a single receipt. A missing amount is a hard failure."""
    image_url = as_image_url(image)
    result = llm_service.request_json(
        RECEIPT_PROMPT.format(tone=roast_service.tone_prompt(tone)),
        "Extract the details of this expense and roast me for it.",
        image_url=image_url,
    )
    if not result.ok or not isinstance(result.value, dict):
        raise UpstreamError("Internal server error during upload")
    data = result.value

    amount = coerce_cents(data.get("amount"))
    if amount is None or amount < 1:
        logger.warning(f"Receipt extraction returned no usable amount: {data.get('amount')!r}")
        raise UpstreamError("Internal server error during upload")

    description = str(data.get("description") or "").strip() or UNKNOWN_DESCRIPTION
    roast = str(data.get("roast") or "").strip() or roast_service.fallback_roast(tone)
    return ReceiptExtraction(
        amount_cents=amount,
        description=description,
        date=parse_date(data.get("date")) or utcnow(),
        category=coerce_category(data.get("category")),
        roast=roast,
    )


def _find_column(headers: List[str], keys) -> Optional[int]:
    for index, header in enumerate(headers):
        if any(key in header for key in keys):
            return index
    return None


def parse_csv(text: str, max_rows: Optional[int] = None) -> NormalizeResult:
    """Tolerant CSV parser: rows with a bad or non-positive amount are skipped."""
    if max_rows is None:
        max_rows = settings.max_import_rows
    rows = list(csv.reader(io.StringIO((text or "").lstrip("\ufeff"))))
    rows = [row for row in rows if any(cell.strip() for cell in row)]
    if not rows:
        raise ValidationFailed("CSV file is empty", field="data")

    headers = [cell.strip().lower() for cell in rows[0]]
    amount_col = _find_column(headers, AMOUNT_HEADER_KEYS)
    if amount_col is None:
        raise ValidationFailed("CSV must have an amount column", field="data")
    date_col = _find_column(headers, DATE_HEADER_KEYS)
    desc_col = _find_column(headers, DESCRIPTION_HEADER_KEYS)

    result = NormalizeResult()
    for row in rows[1:max_rows + 1]:
        def cell(index):
            if index is None or index >= len(row):
                return ""
            return row[index].strip()

        amount = dollars_to_cents(cell(amount_col))
        if amount is None or amount < 1:
            result.skipped += 1
            continue
        result.transactions.append(NormalizedTransaction(
            description=cell(desc_col) or UNKNOWN_DESCRIPTION,
            amount_cents=amount,
            date=parse_date(cell(date_col)) or utcnow(),
        ))
    return result


def extract_pdf_text(pdf_bytes: bytes, limit: Optional[int] = None) -> str:
    if limit is None:
        limit = settings.pdf_text_limit
    chunks = []
    size = 0
    try:
        with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
            for page in pdf.pages:
                page_text = page.extract_text() or ""
                chunks.append(page_text)
                size += len(page_text)
                if size >= limit:
                    break
    except Exception as e:
        logger.warning(f"Could not open PDF: {e}")
        raise ValidationFailed("Could not read PDF file", field="data")
    return "\n".join(chunks)[:limit]


def _transactions_from_model(result) -> NormalizeResult:
    if not result.ok and result.upstream:
        raise UpstreamError("Could not process statement right now")
    if not result.ok:
        raise ValidationFailed("Could not parse transactions from statement", field="data")
    items = result.value
    if isinstance(items, dict):
        items = items.get("transactions", [])
    if not isinstance(items, list):
        raise ValidationFailed("Could not parse transactions from statement", field="data")

    normalized = NormalizeResult()
    for item in items:
        if not isinstance(item, dict):
            normalized.skipped += 1
            continue
        amount = dollars_to_cents(item.get("amount"))
        if amount is None:
            normalized.skipped += 1
            continue
        # some models keep the sign of debits
        amount = abs(amount)
        if amount < 1:
            normalized.skipped += 1
            continue
        normalized.transactions.append(NormalizedTransaction(
            description=str(item.get("description") or "").strip() or UNKNOWN_DESCRIPTION,
            amount_cents=amount,
            date=parse_date(item.get("date")) or utcnow(),
        ))
    return normalized


def parse_pdf(pdf_bytes: bytes) -> NormalizeResult:
    text = extract_pdf_text(pdf_bytes)
    if not text.strip():
        raise ValidationFailed("No text found in PDF", field="data")
    result = llm_service.request_json(
        STATEMENT_PROMPT,
        f"Bank statement text:\n{text}",
        json_object=False,
        temperature=0,
        max_tokens=4000,
    )
    return _transactions_from_model(result)


def parse_statement_image(image: str) -> NormalizeResult:
    result = llm_service.request_json(
        STATEMENT_PROMPT,
        "Extract every outgoing transaction from this statement.",
        image_url=as_image_url(image),
        json_object=False,
        temperature=0,
        max_tokens=4000,
    )
    return _transactions_from_model(result)


def normalize_statement(kind, data: str) -> NormalizeResult:
    try:
        kind = StatementFormat(kind)
    except ValueError:
        raise ValidationFailed("Format must be one of: csv, pdf, image", field="format")

    if kind is StatementFormat.CSV:
        return parse_csv(data)
    if kind is StatementFormat.PDF:
        return parse_pdf(decode_base64_payload(data))
    return parse_statement_image(data)
