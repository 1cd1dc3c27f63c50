"""SAS permission, service and resource-type alphabets.

Member definition order is the canonical serialization order. The validating
service recomputes the string-to-sign from the letters it receives, so letters
are always emitted in this order, never in the order a caller listed them.
"""

from enum import Enum
from typing import FrozenSet, Iterable, Type, TypeVar

from sasforge.exceptions import InvalidScopeError

E = TypeVar("E", bound=Enum)


class BlobSasPermission(str, Enum):
    """Permissions legal on a container or blob (resource-scope) SAS."""

    READ = "r"
    ADD = "a"
    CREATE = "c"
    WRITE = "w"
    DELETE = "d"
    DELETE_PREVIOUS_VERSION = "x"
    PERMANENT_DELETE = "y"
    LIST = "l"
    TAG = "t"
    SET_IMMUTABILITY_POLICY = "i"
    MOVE = "m"
    EXECUTE = "e"


class AccountSasPermission(str, Enum):
    """Permissions legal on an account-scope SAS."""

    READ = "r"
    WRITE = "w"
    DELETE = "d"
    DELETE_PREVIOUS_VERSION = "x"
    PERMANENT_DELETE = "y"
    LIST = "l"
    ADD = "a"
    CREATE = "c"
    UPDATE = "u"
    PROCESS = "p"
    TAG = "t"
    FILTER_BY_TAGS = "f"
    SET_IMMUTABILITY_POLICY = "i"


class AccountSasService(str, Enum):
    """Services an account SAS may cover (alphabetical)."""

    BLOB = "b"
    FILE = "f"
    QUEUE = "q"
    TABLE = "t"

    @property
    def host_label(self) -> str:
        """Label used in the service endpoint host (``acct.<label>.core...``)."""
        return self.name.lower()


class AccountSasResourceType(str, Enum):
    """Resource-type classes an account SAS may cover."""

    SERVICE = "s"
    CONTAINER = "c"
    OBJECT = "o"


class SasProtocol(str, Enum):
    """Protocols a SAS may be used over."""

    HTTPS = "https"
    HTTPS_AND_HTTP = "https,http"


ALL_RESOURCE_TYPES: FrozenSet[AccountSasResourceType] = frozenset(AccountSasResourceType)
ALL_SERVICES: FrozenSet[AccountSasService] = frozenset(AccountSasService)


def to_letters(members: Iterable[E], alphabet: Type[E]) -> str:
    """Serialize a set of flags in the alphabet's canonical order."""
    chosen = set(members)
    return "".join(member.value for member in alphabet if member in chosen)


def from_letters(letters: str, alphabet: Type[E], field: str = "permissions") -> FrozenSet[E]:
    """
    Parse a letter string (``"rl"``) into a set of alphabet members.

    Args:
        letters: Letter codes in any order
        alphabet: Enum whose values are the legal letters
        field: Field name reported on error

    Raises:
        InvalidScopeError: If a letter is not in the alphabet
    """
    members = set()
    legal = "".join(member.value for member in alphabet)
    for letter in letters:
        try:
            members.add(alphabet(letter))
        except ValueError:
            raise InvalidScopeError(
                f"'{letter}' is not a legal {alphabet.__name__} letter",
                field=field,
                expected=legal,
                actual=letters,
            ) from None
    return frozenset(members)


def coerce_members(values: Iterable, alphabet: Type[E], field: str) -> FrozenSet[E]:
    """Accept members of ``alphabet`` or their letter values; reject anything else."""
    if isinstance(values, str):
        return from_letters(values, alphabet, field)

    legal = "".join(member.value for member in alphabet)
    members = set()
    for value in values:
        if isinstance(value, Enum) and not isinstance(value, alphabet):
            raise InvalidScopeError(
                f"{type(value).__name__}.{value.name} is not legal in {field}",
                field=field,
                expected=f"{alphabet.__name__} ({legal})",
                actual=value.value,
            )
        try:
            members.add(alphabet(value))
        except ValueError:
            raise InvalidScopeError(
                f"{value!r} is not a legal {alphabet.__name__}",
                field=field,
                expected=legal,
                actual=value,
            ) from None
    return frozenset(members)
