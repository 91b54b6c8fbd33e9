"""
Request signing for the Remita gateway.

The gateway authenticates calls with a SHA-512 hex digest over a fixed,
ordered concatenation of fields. There is no weaker fallback: if
SHA-512 cannot be constructed the call fails with SignatureUnavailable.
"""

import hashlib

from schoolpay.core.exceptions import SignatureUnavailable

HASH_ALGORITHM = "sha512"
DIGEST_HEX_LENGTH = 128


def sign(*fields: str) -> str:
    """Concatenate fields in the given order and return the SHA-512 hex digest."""
    try:
        digest = hashlib.new(HASH_ALGORITHM)
    except ValueError as exc:
        raise SignatureUnavailable(f"{HASH_ALGORITHM} is not available: {exc}") from exc
    digest.update("".join(str(f) for f in fields).encode("utf-8"))
    return digest.hexdigest()


def reference_request_hash(
    merchant_id: str,
    service_type_id: str,
    order_id: str,
    amount: str,
    api_key: str,
) -> str:
    return sign(merchant_id, service_type_id, order_id, amount, api_key)


def status_check_hash(rrr: str, api_key: str, merchant_id: str) -> str:
    return sign(rrr, api_key, merchant_id)
