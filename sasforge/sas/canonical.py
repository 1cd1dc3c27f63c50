"""String-to-sign construction for SAS tokens.

The field set and order are fixed by the storage service for each version.
The service recomputes the same string from the token's query parameters, so
any difference here produces a token it rejects with ``AuthenticationFailed``.

Blob (resource-scope) SAS, 2018-11-09 and later::

    signedPermissions
    signedStart
    signedExpiry
    canonicalizedResource          /blob/{account}/{container}[/{blob}]
    signedIdentifier               (shared key)  | skoid, sktid, skt, ske, sks, skv
                                                 | [saoid, suoid, scid from 2020-02-10]
    signedIP
    signedProtocol
    signedVersion
    signedResource                 b | c
    signedSnapshotTime
    signedEncryptionScope          (2020-12-06 and later)
    rscc, rscd, rsce, rscl, rsct

Account SAS::

    accountName, sp, ss, srt, st, se, sip, spr, sv, [ses from 2020-12-06]

each followed by a newline, so the account string ends with ``\\n``.
"""

import re
from typing import List, Optional

from sasforge.auth.delegation import DelegationKey
from sasforge.core.clock import format_timestamp
from sasforge.exceptions import InvalidScopeError
from sasforge.sas.scope import AccountSasScope, BlobSasScope

DEFAULT_VERSION = "2021-08-06"
MIN_SUPPORTED_VERSION = "2018-11-09"
DELEGATION_AUDIT_VERSION = "2020-02-10"
ENCRYPTION_SCOPE_VERSION = "2020-12-06"

# rscc, rscd, rsce, rscl, rsct
RESPONSE_HEADER_OVERRIDE_COUNT = 5

_VERSION_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def check_version(version: str) -> str:
    """
    Validate a signed version string.

    Raises:
        InvalidScopeError: If the version is malformed or older than the
            oldest supported layout
    """
    if not version or not _VERSION_RE.match(version):
        raise InvalidScopeError(
            "Signed version must be a YYYY-MM-DD service version",
            field="version",
            expected="YYYY-MM-DD",
            actual=version,
        )
    if version < MIN_SUPPORTED_VERSION:
        raise InvalidScopeError(
            f"Signed version {version} is not supported",
            field="version",
            expected=f">= {MIN_SUPPORTED_VERSION}",
            actual=version,
        )
    return version


def canonicalized_blob_resource(account_name: str, container_name: str, blob_name: Optional[str]) -> str:
    resource = f"/blob/{account_name}/{container_name}"
    if blob_name is not None:
        resource += f"/{blob_name}"
    return resource


def _optional_time(value) -> str:
    return format_timestamp(value) if value is not None else ""


def blob_string_to_sign(
    scope: BlobSasScope,
    account_name: str,
    version: str = DEFAULT_VERSION,
    delegation_key: Optional[DelegationKey] = None,
) -> str:
    """
    Build the string-to-sign for a container or blob SAS.

    Args:
        scope: Resource scope
        account_name: Storage account name
        version: Signed version (``sv``)
        delegation_key: Delegation key when signing a user delegation SAS

    Returns:
        Canonical string-to-sign (no trailing newline)
    """
    check_version(version)

    fields: List[str] = [
        scope.permission_letters,
        _optional_time(scope.start),
        format_timestamp(scope.expiry),
        canonicalized_blob_resource(account_name, scope.container_name, scope.blob_name),
    ]

    if delegation_key is not None:
        fields += [
            delegation_key.signed_oid,
            delegation_key.signed_tid,
            format_timestamp(delegation_key.signed_start),
            format_timestamp(delegation_key.signed_expiry),
            delegation_key.signed_service,
            delegation_key.signed_version,
        ]
        if version >= DELEGATION_AUDIT_VERSION:
            # saoid, suoid, scid
            fields += ["", "", ""]
    else:
        # Stored access policies are not issued here.
        fields.append("")

    fields += [
        scope.ip_range or "",
        scope.protocol.value,
        version,
        scope.signed_resource,
        "",  # snapshot time
    ]
    if version >= ENCRYPTION_SCOPE_VERSION:
        fields.append("")
    fields += [""] * RESPONSE_HEADER_OVERRIDE_COUNT

    return "\n".join(fields)


def account_string_to_sign(
    scope: AccountSasScope,
    account_name: str,
    version: str = DEFAULT_VERSION,
) -> str:
    """
    Build the string-to-sign for an account SAS.

    Returns:
        Canonical string-to-sign, newline terminated
    """
    check_version(version)

    fields = [
        account_name,
        scope.permission_letters,
        scope.service_letters,
        scope.resource_type_letters,
        _optional_time(scope.start),
        format_timestamp(scope.expiry),
        scope.ip_range or "",
        scope.protocol.value,
        version,
    ]
    if version >= ENCRYPTION_SCOPE_VERSION:
        fields.append("")

    return "".join(f"{value}\n" for value in fields)
