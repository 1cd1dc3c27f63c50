"""
SAS signing.

Signature = Base64(HMAC-SHA256(UTF8(StringToSign), Key))

The key is either the decoded account key or the value of a delegation key.
Signing is pure: the same inputs always produce the same signature.
"""

import base64
import hashlib
import hmac
import logging
from datetime import datetime
from typing import Optional

from sasforge.auth.delegation import DelegationKey
from sasforge.auth.descriptor import AccountIdentity
from sasforge.core.clock import format_timestamp, to_utc
from sasforge.exceptions import SigningError

logger = logging.getLogger(__name__)


def compute_signature(key: bytes, string_to_sign: str) -> str:
    """
    Compute the base64 HMAC-SHA256 signature of a string-to-sign.

    Args:
        key: Raw key bytes
        string_to_sign: Canonical string

    Returns:
        Base64-encoded signature

    Raises:
        SigningError: If the key or the string-to-sign is empty
    """
    if not key:
        raise SigningError("Signing key material is empty", field="key")
    if not string_to_sign:
        raise SigningError("String-to-sign is empty", field="string_to_sign")

    digest = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def sign_with_account_key(identity: AccountIdentity, string_to_sign: str) -> str:
    """Sign with the identity's shared account key."""
    if not identity.has_shared_key:
        raise SigningError(
            f"Account '{identity.name}' has no shared key",
            field="AccountKey",
        )
    return compute_signature(identity.shared_key, string_to_sign)


def sign_with_delegation_key(
    key: DelegationKey,
    start: Optional[datetime],
    expiry: datetime,
    string_to_sign: str,
) -> str:
    """
    Sign with a delegation key after checking it covers the token window.

    A token whose window reaches outside the key's window would be rejected
    by the service, so it is never signed.

    Raises:
        SigningError: If no start is given, if ``[start, expiry]`` is not
            inside ``[key.signed_start, key.signed_expiry]``, or if the key
            value is empty
    """
    if start is None:
        raise SigningError(
            "A start time is required to sign with a delegation key",
            field="start",
            expected=f">= {format_timestamp(key.signed_start)}",
        )

    start = to_utc(start)
    expiry = to_utc(expiry)

    if key.covers(start, expiry):
        return compute_signature(key.value, string_to_sign)

    if start < key.signed_start:
        raise SigningError(
            "Token starts before the delegation key becomes valid",
            field="start",
            expected=f">= {format_timestamp(key.signed_start)}",
            actual=format_timestamp(start),
        )

    logger.debug(
        f"Refusing to sign: token expiry {format_timestamp(expiry)} is past "
        f"key expiry {format_timestamp(key.signed_expiry)}"
    )
    raise SigningError(
        "Token expires after the delegation key",
        field="expiry",
        expected=f"<= {format_timestamp(key.signed_expiry)}",
        actual=format_timestamp(expiry),
    )
