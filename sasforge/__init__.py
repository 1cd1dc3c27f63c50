"""
sasforge: Shared Access Signature issuance

Mints time-bounded, permission-scoped SAS tokens and URIs for storage
accounts, signed with an account key or a brokered delegation key.
"""

__version__ = "0.1.0"
__author__ = "sasforge Team"

from .auth.descriptor import AccountIdentity
from .sas.issuer import SasIssuer, SasPolicy, generate_account_sas, generate_blob_sas
from .sas.token import SignedToken

__all__ = [
    "AccountIdentity",
    "SasIssuer",
    "SasPolicy",
    "SignedToken",
    "generate_account_sas",
    "generate_blob_sas",
    "__version__",
]
