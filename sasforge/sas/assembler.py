"""
Authorized URI and connection-string assembly.

Combines a signed token with service endpoints. Nothing is returned unless
every piece assembled cleanly.
"""

import logging
from typing import Iterable, Mapping, Optional, Tuple
from urllib.parse import quote, urlsplit, urlunsplit

from sasforge.exceptions import InvalidScopeError
from sasforge.sas.permissions import AccountSasService
from sasforge.sas.token import SignedToken

logger = logging.getLogger(__name__)

# Connection-string key per service, in emission order.
CONNECTION_STRING_KEYS: Tuple[Tuple[AccountSasService, str], ...] = (
    (AccountSasService.BLOB, "BlobEndpoint"),
    (AccountSasService.QUEUE, "QueueEndpoint"),
    (AccountSasService.FILE, "FileEndpoint"),
    (AccountSasService.TABLE, "TableEndpoint"),
)


def _split_endpoint(endpoint: str) -> Tuple[str, str, str]:
    parts = urlsplit(endpoint)
    if not parts.scheme or not parts.netloc:
        raise InvalidScopeError(
            f"Endpoint must be an absolute URI: {endpoint!r}",
            field="endpoint",
            expected="scheme://host[/path]",
            actual=endpoint,
        )
    if parts.query or parts.fragment:
        raise InvalidScopeError(
            f"Endpoint must not carry a query or fragment: {endpoint!r}",
            field="endpoint",
            actual=endpoint,
        )
    return parts.scheme, parts.netloc, parts.path.rstrip("/")


def quote_path_segment(name: str) -> str:
    """Percent-encode a container or blob name for a URI path (``/`` kept)."""
    return quote(name, safe="/~")


def build_resource_uri(
    endpoint: str,
    container_name: str,
    blob_name: Optional[str],
    token: SignedToken,
) -> str:
    """
    Build ``scheme://host/container[/blob]?query``.

    Args:
        endpoint: Blob service endpoint (``https://acct.blob.core.windows.net``)
        container_name: Container name
        blob_name: Blob name, or None for a container URI
        token: Signed token

    Returns:
        Authorized resource URI
    """
    scheme, netloc, base_path = _split_endpoint(endpoint)

    path = f"{base_path}/{quote_path_segment(container_name)}"
    if blob_name is not None:
        path += f"/{quote_path_segment(blob_name)}"

    return urlunsplit((scheme, netloc, path, token.to_query_string(), ""))


def build_service_uri(endpoint: str, token: SignedToken) -> str:
    """Build ``scheme://host/?query`` for an account SAS."""
    scheme, netloc, base_path = _split_endpoint(endpoint)
    return urlunsplit((scheme, netloc, f"{base_path}/", token.to_query_string(), ""))


def build_connection_string(
    endpoints: Mapping[AccountSasService, str],
    token: SignedToken,
    services: Optional[Iterable[AccountSasService]] = None,
) -> str:
    """
    Build a multi-service connection string sharing one account SAS.

    Format: ``BlobEndpoint=...;TableEndpoint=...;SharedAccessSignature=<query>``

    Args:
        endpoints: Endpoint per service
        token: Account SAS token
        services: Services to include; defaults to the services the token's
            ``ss`` parameter covers

    Raises:
        InvalidScopeError: If a requested service has no endpoint or the
            token is not an account SAS
    """
    if services is None:
        letters = token.get("ss")
        if not letters:
            raise InvalidScopeError(
                "Connection strings require an account SAS (missing 'ss')", field="ss"
            )
        services = [AccountSasService(letter) for letter in letters]

    wanted = set(services)
    segments = []
    for service, key in CONNECTION_STRING_KEYS:
        if service not in wanted:
            continue
        endpoint = endpoints.get(service)
        if not endpoint:
            raise InvalidScopeError(
                f"No endpoint configured for service: {service.host_label}",
                field="endpoints",
                actual=service.host_label,
            )
        _split_endpoint(endpoint)
        segments.append(f"{key}={endpoint.rstrip('/')}")

    segments.append(f"SharedAccessSignature={token.to_query_string()}")
    logger.debug(f"Assembled connection string with {len(segments) - 1} endpoint(s)")
    return ";".join(segments)


def parse_resource_uri(uri: str) -> Tuple[str, SignedToken]:
    """
    Split an authorized URI into its base URI and signed token.

    Returns:
        Tuple of (base URI without query, SignedToken)
    """
    parts = urlsplit(uri)
    base = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    return base, SignedToken.from_query_string(parts.query)

