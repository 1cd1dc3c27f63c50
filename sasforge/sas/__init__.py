"""SAS scopes, canonical strings, tokens and URI assembly."""

from .permissions import (
    AccountSasPermission,
    AccountSasResourceType,
    AccountSasService,
    BlobSasPermission,
    SasProtocol,
)
from .scope import AccountSasScope, BlobSasScope
from .token import SignedToken
from .issuer import SasIssuer, SasPolicy

__all__ = [
    "AccountSasPermission",
    "AccountSasResourceType",
    "AccountSasService",
    "BlobSasPermission",
    "SasProtocol",
    "AccountSasScope",
    "BlobSasScope",
    "SignedToken",
    "SasIssuer",
    "SasPolicy",
]
