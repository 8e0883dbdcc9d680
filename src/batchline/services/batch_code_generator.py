"""
Batch code and traceability payload generation.

Batch codes look like ``SOA-LX3K9Q2A-7H2KQ9ZP``:

    {product prefix}-{millisecond timestamp, base36}-{random suffix, base36}

The prefix is the first three letters/digits of the product name,
uppercased and padded with 'X'. Codes are generated locally with no
database round trip; uniqueness is only probabilistic here and the batch
registry (unique constraint plus retry) is the authority.

The traceability payload is the JSON document encoded in a batch's QR
label. It resolves back to the batch by its ``batchCode`` alone.
"""

import json
import secrets
import string
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from ..utils.constants import BATCH_CODE_PREFIX_LENGTH, BATCH_CODE_SUFFIX_LENGTH
from ..utils.datetime_utils import as_utc, utc_now
from .exceptions import ValidationError

BASE36_ALPHABET = string.digits + string.ascii_uppercase


def to_base36(value: int) -> str:
    """
    Encode a non-negative integer in uppercase base36.

    Examples:
        >>> to_base36(0)
        '0'
        >>> to_base36(35)
        'Z'
        >>> to_base36(36)
        '10'
    """
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def product_prefix(product_name: str) -> str:
    """First three ASCII letters/digits of the product name, X-padded."""
    chars = [c for c in product_name if c.isascii() and c.isalnum()]
    prefix = "".join(chars[:BATCH_CODE_PREFIX_LENGTH]).upper()
    return prefix.ljust(BATCH_CODE_PREFIX_LENGTH, "X")


def _random_suffix(choice: Callable[[str], str]) -> str:
    return "".join(choice(BASE36_ALPHABET) for _ in range(BATCH_CODE_SUFFIX_LENGTH))


def generate_batch_code(
    product_name: str,
    now: Optional[datetime] = None,
    choice: Optional[Callable[[str], str]] = None,
) -> str:
    """
    Generate a batch code for a product.

    Args:
        product_name: Product the batch makes
        now: Timestamp to encode (default: current UTC time)
        choice: Character picker for the random suffix (default:
            secrets.choice); tests pass a seeded random.Random().choice

    Returns:
        Uppercase code of the form PREFIX-TIMESTAMP-SUFFIX
    """
    moment = as_utc(now) if now is not None else utc_now()
    millis = int(moment.timestamp() * 1000)
    picker = choice or secrets.choice
    return f"{product_prefix(product_name)}-{to_base36(millis)}-{_random_suffix(picker)}"


def _json_number(value) -> Any:
    if isinstance(value, Decimal):
        normalized = value.normalize()
        if normalized == normalized.to_integral_value():
            return int(normalized)
        return float(normalized)
    return value


def build_traceability_payload(
    batch_code: str,
    product_name: str,
    formulation_version: int,
    batch_size,
    start_time: datetime,
) -> str:
    """
    Build the JSON traceability payload for a batch's QR label.

    Args:
        batch_code: Code of the batch
        product_name: Product name
        formulation_version: Version number of the formulation used
        batch_size: Batch size
        start_time: Batch start time (serialized as ISO 8601 UTC)

    Returns:
        Compact JSON string with keys batchCode, productName,
        formulationVersion, batchSize, startTime
    """
    payload = {
        "batchCode": batch_code,
        "productName": product_name,
        "formulationVersion": formulation_version,
        "batchSize": _json_number(batch_size),
        "startTime": as_utc(start_time).isoformat(),
    }
    return json.dumps(payload, separators=(",", ":"))


def parse_traceability_payload(payload) -> Dict[str, Any]:
    """
    Parse a scanned traceability payload.

    Accepts the JSON string or an already-decoded dict.

    Raises:
        ValidationError: If the payload is not JSON or has no batchCode
    """
    if isinstance(payload, (str, bytes)):
        try:
            data = json.loads(payload)
        except ValueError:
            raise ValidationError(["Traceability payload is not valid JSON"])
    else:
        data = payload

    if not isinstance(data, dict):
        raise ValidationError(["Traceability payload must be a JSON object"])
    code = data.get("batchCode")
    if not isinstance(code, str) or not code.strip():
        raise ValidationError(["Traceability payload has no batchCode"])
    return data
