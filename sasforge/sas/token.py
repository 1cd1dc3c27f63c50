"""Signed SAS token representation.

A ``SignedToken`` holds unencoded parameter values in the fixed order the
query string is emitted in. Values are percent-encoded exactly once, when the
query string is produced, so re-parsing and re-serializing a token never
double-encodes.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import quote, unquote

from sasforge.exceptions import SigningError

# Emission order of every parameter a token may carry.
PARAMETER_ORDER: Tuple[str, ...] = (
    "skoid",  # delegation key principal object id
    "sktid",  # delegation key tenant id
    "skt",  # delegation key start
    "ske",  # delegation key expiry
    "sks",  # delegation key service
    "skv",  # delegation key version
    "sv",  # signed version
    "ss",  # signed services
    "srt",  # signed resource types
    "spr",  # signed protocol
    "st",  # signed start
    "se",  # signed expiry
    "sip",  # signed IP range
    "si",  # signed identifier
    "sr",  # signed resource
    "sp",  # signed permissions
    "sig",  # signature
)

_POSITION = {name: index for index, name in enumerate(PARAMETER_ORDER)}

REQUIRED_PARAMETERS = ("sv", "se", "sp", "sig")


@dataclass(frozen=True)
class SignedToken:
    """Immutable, deterministically ordered set of SAS query parameters."""

    parameters: Tuple[Tuple[str, str], ...]

    def __post_init__(self):
        seen = set()
        for name, value in self.parameters:
            if name not in _POSITION:
                raise SigningError(
                    f"Unknown SAS parameter: {name}",
                    field=name,
                    expected=", ".join(PARAMETER_ORDER),
                )
            if name in seen:
                raise SigningError(f"Duplicate SAS parameter: {name}", field=name)
            seen.add(name)

        missing = [name for name in REQUIRED_PARAMETERS if name not in seen]
        if missing:
            raise SigningError(
                f"SAS token is missing required parameters: {', '.join(missing)}",
                field=missing[0],
            )

        ordered = tuple(sorted(self.parameters, key=lambda item: _POSITION[item[0]]))
        object.__setattr__(self, "parameters", ordered)

    @classmethod
    def build(
        cls,
        parameters: Union[Mapping[str, Optional[str]], Iterable[Tuple[str, Optional[str]]]],
    ) -> "SignedToken":
        """Build a token, dropping parameters whose value is ``None`` or empty."""
        items = parameters.items() if isinstance(parameters, Mapping) else parameters
        return cls(tuple((name, value) for name, value in items if value))

    @classmethod
    def from_query_string(cls, query: str) -> "SignedToken":
        """
        Parse a SAS query string (leading ``?`` optional).

        Raises:
            SigningError: On unknown, duplicate or missing parameters
        """
        query = query[1:] if query.startswith("?") else query
        pairs = []
        for part in query.split("&"):
            if not part:
                continue
            name, _, value = part.partition("=")
            pairs.append((unquote(name), unquote(value)))
        return cls(tuple(pairs))

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        for key, value in self.parameters:
            if key == name:
                return value
        return default

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(name)
        return value

    def __contains__(self, name: object) -> bool:
        return any(key == name for key, _ in self.parameters)

    @property
    def signature(self) -> str:
        return self["sig"]

    @property
    def is_delegated(self) -> bool:
        return "skoid" in self or "skt" in self

    def as_dict(self) -> Dict[str, str]:
        return dict(self.parameters)

    def to_query_string(self) -> str:
        """Serialize as ``name=value&...`` without a leading ``?``."""
        return "&".join(f"{name}={quote(value, safe='')}" for name, value in self.parameters)

    def __str__(self) -> str:
        return self.to_query_string()
