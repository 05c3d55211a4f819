# payrec/core/normalizers.py

"""
Data normalization utilities for payer strings and payment rows.

Ensures consistent data format regardless of source.
"""

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable
import re
import unicodedata

from payrec.core.errors import ValidationError

# Transaction boilerplate and titles that say nothing about who paid.
# Removed from the token set only; the payer key keeps them.
PAYER_STOPWORDS = frozenset({
    "transf",
    "transfer",
    "transferencia",
    "trf",
    "trx",
    "deposito",
    "deposit",
    "dep",
    "pago",
    "pagos",
    "payment",
    "pmt",
    "debito",
    "credito",
    "cbu",
    "sr",
    "sra",
    "srta",
    "sres",
    "dr",
    "dra",
    "mr",
    "mrs",
    "ms",
})

_NON_WORD = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")
_PERIOD = re.compile(r"^(\d{4})[-/](\d{1,2})$")


def normalize_payer(raw: Any) -> str:
    """
    Canonical payer key for a raw payer/account string.

    - Lowercase
    - Strip diacritics
    - Punctuation becomes a word break
    - Collapse whitespace

    Pure and idempotent: normalize_payer(normalize_payer(s)) == normalize_payer(s).
    """
    if raw is None:
        return ""

    # Decompose before lowercasing: NFKD can produce capitals (ᴬ -> A)
    s = _fold(_fold(str(raw)))
    s = _NON_WORD.sub(" ", s)
    s = _WHITESPACE.sub(" ", s).strip()
    return s


def _fold(s: str) -> str:
    s = unicodedata.normalize("NFKD", s)
    return "".join(c for c in s if not unicodedata.combining(c)).lower()


def tokenize(payer_key: str, stopwords: Iterable[str] = ()) -> tuple[str, ...]:
    """
    Ordered, de-duplicated tokens of a payer key for fuzzy scoring.

    Boilerplate words (transfer/deposit markers, titles) are dropped.
    """
    if not payer_key:
        return ()

    drop = PAYER_STOPWORDS | frozenset(stopwords)
    tokens = [t for t in payer_key.split(" ") if t and t not in drop]
    return tuple(dict.fromkeys(tokens))


def normalize_and_tokenize(raw: Any, stopwords: Iterable[str] = ()) -> tuple[str, tuple[str, ...]]:
    """Normalize and tokenize in one step."""
    key = normalize_payer(raw)
    return key, tokenize(key, stopwords)


def build_payer_raw(*parts: Any) -> str:
    """Join the payer columns of an export row into one raw payer string."""
    return " ".join(str(p).strip() for p in parts if p is not None and str(p).strip())


def normalize_amount(amount: Any) -> Decimal:
    """
    Normalize amount to Decimal.

    Handles:
    - Integers and floats
    - Strings with currency symbols
    - "1.500,50" and "1,500.50" thousands/decimal styles

    Raises ValidationError for anything that is not a positive amount.
    """
    if amount is None or isinstance(amount, bool):
        raise ValidationError("amount is required")

    if isinstance(amount, Decimal):
        value = amount
    elif isinstance(amount, (int, float)):
        value = Decimal(str(amount))
    elif isinstance(amount, str):
        cleaned = re.sub(r"[^\d.,-]", "", amount)
        if "," in cleaned and "." in cleaned:
            # The right-most separator is the decimal one
            if cleaned.rfind(",") > cleaned.rfind("."):
                cleaned = cleaned.replace(".", "").replace(",", ".")
            else:
                cleaned = cleaned.replace(",", "")
        elif "," in cleaned:
            head, _, tail = cleaned.rpartition(",")
            if len(tail) in (1, 2) and cleaned.count(",") == 1:
                cleaned = f"{head}.{tail}"
            else:
                cleaned = cleaned.replace(",", "")
        try:
            value = Decimal(cleaned)
        except InvalidOperation:
            raise ValidationError(f"malformed amount: {amount!r}")
    else:
        raise ValidationError(f"malformed amount: {amount!r}")

    if not value.is_finite() or value <= 0:
        raise ValidationError(f"amount must be positive: {amount!r}")

    return value.quantize(Decimal("0.01"))


def normalize_period(period: Any) -> str:
    """
    Normalize a billing period.

    Month periods become "YYYY-MM"; other labels (registration, clothing
    periods) are kept as trimmed lowercase strings.
    """
    if isinstance(period, (date, datetime)):
        return f"{period.year:04d}-{period.month:02d}"

    if period is None or not str(period).strip():
        raise ValidationError("period is required")

    s = str(period).strip()
    m = _PERIOD.match(s)
    if m:
        month = int(m.group(2))
        if not 1 <= month <= 12:
            raise ValidationError(f"malformed period: {period!r}")
        return f"{m.group(1)}-{month:02d}"

    if re.match(r"^\d", s):
        raise ValidationError(f"malformed period: {period!r}")

    return s.lower()


def normalize_date(d: Any) -> datetime | None:
    """
    Normalize a payment timestamp to an aware UTC datetime.

    Handles:
    - date / datetime objects
    - ISO strings
    - Unix timestamps
    - Common day-first and month-first formats
    """
    if d is None or d == "":
        return None

    if isinstance(d, datetime):
        return d if d.tzinfo else d.replace(tzinfo=timezone.utc)

    if isinstance(d, date):
        return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)

    if isinstance(d, (int, float)) and not isinstance(d, bool):
        return datetime.fromtimestamp(d, tz=timezone.utc)

    if isinstance(d, str):
        try:
            parsed = datetime.fromisoformat(d.strip().replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            pass

        formats = [
            "%d/%m/%Y",
            "%d/%m/%Y %H:%M",
            "%d-%m-%Y",
            "%Y/%m/%d",
        ]
        for fmt in formats:
            try:
                return datetime.strptime(d.strip(), fmt).replace(tzinfo=timezone.utc)
            except ValueError:
                continue

    raise ValidationError(f"malformed date: {d!r}")


def normalize_reference(ref: Any) -> str:
    """Trimmed, lowercased, single-spaced payment reference."""
    if ref is None:
        return ""
    return _WHITESPACE.sub(" ", str(ref).strip().lower())
