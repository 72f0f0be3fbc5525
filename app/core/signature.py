from __future__ import annotations

import hmac
from collections.abc import Callable
from hashlib import sha256

from app.core.config import settings

SIGNATURE_LENGTH = 8
DEFAULT_DOMAIN = "catholink-secure"
_BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"

SignatureDeriver = Callable[[str, str], str]


def _canonical_signature_payload(*, holder_id: str, issue_date: str, domain: str) -> str:
    return f"{holder_id}-{issue_date}-{domain}"


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _utf16_code_units(text: str):
    # Lone surrogates are hashed as plain code units.
    raw = text.encode("utf-16-le", "surrogatepass")
    for index in range(0, len(raw), 2):
        yield raw[index] | (raw[index + 1] << 8)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def _fit_width(token: str) -> str:
    return token[-SIGNATURE_LENGTH:].rjust(SIGNATURE_LENGTH, "0")


def rolling_hash(text: str) -> int:
    """Signed 32-bit ``h * 31 + unit`` hash over UTF-16 code units.

    Matches the hash the holder app computes, so credentials signed on the
    device verify here without any shared state.
    """
    accumulator = 0
    for unit in _utf16_code_units(text):
        accumulator = _to_int32((accumulator << 5) - accumulator + unit)
    return accumulator


def derive_signature(holder_id: str, issue_date: str, *, domain: str = DEFAULT_DOMAIN) -> str:
    payload = _canonical_signature_payload(holder_id=holder_id, issue_date=issue_date, domain=domain)
    return _fit_width(_to_base36(abs(rolling_hash(payload))))


def derive_keyed_signature(
    *,
    secret: str,
    holder_id: str,
    issue_date: str,
    domain: str = DEFAULT_DOMAIN,
) -> str:
    payload = _canonical_signature_payload(holder_id=holder_id, issue_date=issue_date, domain=domain)
    digest = hmac.new(secret.encode("utf-8"), payload.encode("utf-8", "surrogatepass"), sha256).digest()
    # 40 bits always fit in 8 base-36 digits.
    return _fit_width(_to_base36(int.from_bytes(digest[:5], "big")))


def signatures_match(expected: str, provided: str) -> bool:
    return hmac.compare_digest(
        expected.encode("utf-8", "surrogatepass"),
        provided.encode("utf-8", "surrogatepass"),
    )


def get_signature_deriver() -> SignatureDeriver:
    domain = settings.credential_domain or DEFAULT_DOMAIN
    secret = settings.credential_signing_secret
    if secret:
        return lambda holder_id, issue_date: derive_keyed_signature(
            secret=secret,
            holder_id=holder_id,
            issue_date=issue_date,
            domain=domain,
        )
    return lambda holder_id, issue_date: derive_signature(holder_id, issue_date, domain=domain)
