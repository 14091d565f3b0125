"""
Extract the receipt total from raw OCR text.

Three passes, first hit wins:
1. a line with a total-like keyword: right-most number on it (or on a neighbour line)
2. the bottom few lines that are not payment/footer noise
3. every number on the receipt, scored by keyword, position and currency sign

Numbers without a decimal separator between 100 and 50000 are read as
amounts with the decimal point dropped by OCR (1250 -> 12.50).
"""
import math
import re
from typing import List, Optional

KEYWORDS = re.compile(
    r"\b(total|amount|amt|amount due|grand total|total payable|balance due|subtotal|net total|sum)\b", re.I
)
CHANGE = re.compile(r"\b(change|cash change)\b", re.I)
FOOTER = re.compile(
    r"\b(thank you|thank|cash|change|balance|card|approval|barcode|visa|mastercard|amex|payment method|tel:|phone:|address:)\b",
    re.I,
)
MONEY_TOKEN = re.compile(r"([0-9]{1,3}(?:[.,][0-9]{3})*(?:[.,][0-9]{1,2})|[0-9]+[.,][0-9]+|[0-9]+)")
CURRENCY = re.compile("[£$€]")


def _normalize_line(line: str) -> str:
    # Only repair letter/digit confusions inside tokens that already hold a digit.
    parts = re.split(r"(\s+)", line)
    out = []
    for part in parts:
        if re.search(r"[0-9]", part):
            part = re.sub(r"[Oo]", "0", part)
            part = re.sub(r"[lI]", "1", part)
        out.append(part)
    return "".join(out)


def _to_number(text: str) -> Optional[float]:
    try:
        value = float(text)
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value) or value <= 0:
        return None
    return value


def _implied_decimal(value: float, had_decimal: bool) -> float:
    if not had_decimal and value >= 100 and value / 100 <= 500:
        return value / 100
    return value


def _keyword_pass(lines: List[str]) -> Optional[float]:
    for i, line in enumerate(lines):
        if not line or not KEYWORDS.search(line):
            continue

        for raw in reversed(line.split()):
            tok = re.sub(r"[^0-9.,]", "", raw).replace(",", ".")
            if not tok:
                continue
            value = _to_number(re.sub(r"[^0-9.]", "", tok))
            if value is not None:
                return _implied_decimal(value, bool(re.search(r"[.,]", raw)))

        for delta in (1, -1):
            j = i + delta
            if 0 <= j < len(lines):
                matches = MONEY_TOKEN.findall(lines[j])
                if matches:
                    raw = matches[-1]
                    value = _to_number(raw.replace(",", "."))
                    if value is not None:
                        return _implied_decimal(value, bool(re.search(r"[.,]", raw)))
    return None


def _bottom_pass(lines: List[str]) -> Optional[float]:
    for line in reversed(lines[-8:]):
        if not line or FOOTER.search(line):
            continue
        matches = MONEY_TOKEN.findall(line)
        if matches:
            raw = matches[-1]
            value = _to_number(raw.replace(",", "."))
            if value is not None:
                return _implied_decimal(value, bool(re.search(r"[.,]", raw)))
    return None


def _scored_pass(lines: List[str]) -> Optional[float]:
    candidates = []
    for i, line in enumerate(lines):
        if not line or not re.search(r"[0-9]", line):
            continue
        for match in MONEY_TOKEN.finditer(line):
            raw = match.group(1)
            if raw.count(".") + raw.count(",") > 1:
                # keep only the last separator: 1.234,56 -> 1234,56
                raw = re.sub(r"[.,](?=.*[.,])", "", raw)
            had_decimal = bool(re.search(r"[.,]", raw))
            value = _to_number(raw.replace(",", "."))
            if value is None:
                continue

            score = 0
            if KEYWORDS.search(line):
                score += 50
            from_bottom = len(lines) - 1 - i
            if from_bottom <= 2:
                score += 20
            elif from_bottom <= 5:
                score += 10
            if CURRENCY.search(line):
                score += 10
            if CHANGE.search(line):
                score -= 40
            score += min(5, int(math.log10(value + 1)))
            candidates.append([score, value, had_decimal])

    if not candidates:
        return None

    top = max(c[1] for c in candidates)
    for c in candidates:
        if c[1] == top:
            c[0] += 5
    score, value, had_decimal = max(candidates, key=lambda c: (c[0], c[1]))
    return _implied_decimal(value, had_decimal)


def parse_amount_from_ocr_text(text: str) -> Optional[float]:
    if not text:
        return None
    lines = [_normalize_line(line.strip()) for line in str(text).splitlines()]
    if not lines:
        return None
    for extract in (_keyword_pass, _bottom_pass, _scored_pass):
        amount = extract(lines)
        if amount is not None:
            return amount
    return None


def validate_amount(amount, maximum: float = 100000) -> bool:
    """True for a positive, finite amount below `maximum`."""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and 0 < value < maximum
