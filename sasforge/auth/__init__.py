"""Credential parsing, delegation key brokering and signing."""

from .descriptor import AccountIdentity, parse_descriptor
from .delegation import (
    DelegationKey,
    DelegationKeyAuthority,
    DelegationKeyBroker,
    DelegationKeyRequest,
    KeyState,
)
from .authority import LocalDelegationAuthority
from .signer import compute_signature, sign_with_account_key, sign_with_delegation_key

__all__ = [
    "AccountIdentity",
    "parse_descriptor",
    "DelegationKey",
    "DelegationKeyAuthority",
    "DelegationKeyBroker",
    "DelegationKeyRequest",
    "KeyState",
    "LocalDelegationAuthority",
    "compute_signature",
    "sign_with_account_key",
    "sign_with_delegation_key",
]
