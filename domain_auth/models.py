"""
Data model for per-domain directory authentication.

DomainConfig records are built once at startup and shared read-only across
requests; the request/response types are created per login attempt.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from ldap3.utils.ciDict import CaseInsensitiveDict


class AuthAction(Enum):
    """Action an authentication request was issued for"""
    LOGIN = "login"
    LINK = "link"
    CREATE = "create"
    REMOVE = "remove"


class AuthStatus(Enum):
    """Outcome reported to the host's authentication manager"""
    PASS = "pass"
    ABSTAIN = "abstain"
    FAIL = "fail"


class AuthState(Enum):
    """States of a single login attempt"""
    INIT = "init"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    SEARCHING = "searching"
    PASS = "pass"
    ABSTAIN = "abstain"
    FAIL = "fail"


SCOPE_SUBTREE = "subtree"
SCOPE_ONE_LEVEL = "one-level"

ENCRYPTION_NONE = "none"
ENCRYPTION_SSL = "ssl"
ENCRYPTION_TLS = "tls"
ENCRYPTION_TYPES = (ENCRYPTION_NONE, ENCRYPTION_SSL, ENCRYPTION_TLS)


@dataclass(frozen=True)
class DomainConfig:
    """Complete, validated configuration for one authentication domain"""
    name: str
    servers: Tuple[Any, ...] = ()
    bind_dn: Optional[str] = None
    bind_password: Optional[str] = None
    base_dn: Optional[str] = None
    search_filter: str = "(sAMAccountName={username})"
    search_scope: str = SCOPE_SUBTREE
    encryption: str = ENCRYPTION_SSL
    use_local_fallback: bool = False
    is_active_directory: bool = False
    cache_ttl: int = 3600
    group_map: Mapping[str, FrozenSet[str]] = field(default_factory=dict)

    @property
    def anonymous(self) -> bool:
        return self.bind_dn is None

    @property
    def scheme(self) -> str:
        """Protocol label used in log messages ('ldap' for unencrypted)."""
        return "ldap" if self.encryption == ENCRYPTION_NONE else self.encryption


@dataclass(frozen=True)
class AuthenticationRequest:
    """A single login attempt; immutable once dispatched"""
    domain: str
    username: str
    password: str = field(repr=False, default="")
    action: AuthAction = AuthAction.LOGIN


def directory_entry(attributes: Mapping[str, Any], dn: str = "") -> CaseInsensitiveDict:
    """
    Build a DirectoryEntry: a case-insensitive mapping of attribute name to
    a list of string values. The entry DN is kept on ``entry.entry_dn``.
    """
    entry = CaseInsensitiveDict()
    for name, values in attributes.items():
        if values is None:
            continue
        if isinstance(values, (list, tuple, set, frozenset)):
            entry[name] = [_as_text(v) for v in values]
        else:
            entry[name] = [_as_text(values)]
    entry.entry_dn = dn
    return entry


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return str(value)


def first_value(entry: Mapping[str, List[str]], attribute: str) -> Optional[str]:
    """Return the first value of an attribute, or None when absent/empty."""
    values = entry.get(attribute) or []
    return values[0] if values else None


# Session-data keys handed to the identity store
SESSION_USERNAME = "ldap_auth_username"
SESSION_DISPLAY_NAME = "ldap_auth_display_name"
SESSION_FIRST_NAME = "ldap_auth_first_name"
SESSION_LAST_NAME = "ldap_auth_last_name"
SESSION_EMAIL = "ldap_auth_email"
SESSION_DOMAIN = "ldap_auth_domain"


@dataclass
class SessionAttributes:
    """Subset of a directory entry kept for the duration of the login flow"""
    username: Optional[str]
    display_name: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    email: Optional[str]
    domain: str

    @classmethod
    def from_entry(cls, entry: Mapping[str, List[str]], domain: str) -> "SessionAttributes":
        return cls(
            username=first_value(entry, "sAMAccountName"),
            display_name=first_value(entry, "displayName"),
            first_name=first_value(entry, "givenName"),
            last_name=first_value(entry, "sn"),
            email=first_value(entry, "mail"),
            domain=domain,
        )

    def as_session_data(self) -> Dict[str, Optional[str]]:
        return {
            SESSION_USERNAME: self.username,
            SESSION_DISPLAY_NAME: self.display_name,
            SESSION_FIRST_NAME: self.first_name,
            SESSION_LAST_NAME: self.last_name,
            SESSION_EMAIL: self.email,
            SESSION_DOMAIN: self.domain,
        }


@dataclass(frozen=True)
class GroupDiff:
    """Local groups to add and remove for one user"""
    to_add: FrozenSet[str] = frozenset()
    to_remove: FrozenSet[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


@dataclass
class LocalUser:
    """Local account the directory identity is attached to"""
    id: Optional[int]
    name: str
    email: Optional[str] = None
    real_name: Optional[str] = None
    email_confirmed: bool = False
    domain: Optional[str] = None

    def __str__(self) -> str:
        return self.name


@dataclass
class AuthenticationResponse:
    """Result of a login attempt"""
    status: AuthStatus
    state: AuthState
    username: Optional[str] = None
    message: Optional[str] = None
    message_key: Optional[str] = None
    message_params: Dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.status is AuthStatus.PASS


@dataclass
class StatusValue:
    """Good/fatal status for provider capability checks"""
    ok: bool
    message: Optional[str] = None

    @classmethod
    def good(cls) -> "StatusValue":
        return cls(True)

    @classmethod
    def fatal(cls, message: str) -> "StatusValue":
        return cls(False, message)


def lower_all(values: Iterable[str]) -> FrozenSet[str]:
    """Canonical (lower-cased, stripped) form of directory group identifiers."""
    return frozenset(v.strip().lower() for v in values if v and v.strip())
