"""
Domain Auth - multi-domain LDAP / Active Directory authentication

Provides:
- Per-domain config normalization (scalar or per-domain values)
- Ordered server failover with anonymous or bind-DN search binds
- Pass/abstain/fail login decisions gated by a local-fallback switch
- Directory-to-local group reconciliation with a TTL search cache
"""

__version__ = "1.0.0"

from .cache import SearchCache
from .directory import Ldap3Client, LdapClient
from .errors import (
    ConfigValidationError,
    ConnectivityError,
    CredentialError,
    DirectorySearchError,
    DomainAuthError,
    MappingError,
    NotInSearchBaseError,
    SearchBaseMissingError,
    UnsupportedOperationError,
)
from .groups import GroupReconciler
from .messages import Localizer
from .models import AuthAction, AuthenticationRequest, AuthStatus, DomainConfig, LocalUser
from .permissions import RoleRegistry
from .provider import AuthenticationOrchestrator
from .resolver import ConfigResolver
from .store import MemoryIdentityStore, RestIdentityStore

__all__ = [
    "AuthAction",
    "AuthStatus",
    "AuthenticationOrchestrator",
    "AuthenticationRequest",
    "ConfigResolver",
    "ConfigValidationError",
    "ConnectivityError",
    "CredentialError",
    "DirectorySearchError",
    "DomainAuthError",
    "DomainConfig",
    "GroupReconciler",
    "Ldap3Client",
    "LdapClient",
    "LocalUser",
    "Localizer",
    "MappingError",
    "MemoryIdentityStore",
    "NotInSearchBaseError",
    "RestIdentityStore",
    "RoleRegistry",
    "SearchBaseMissingError",
    "SearchCache",
    "UnsupportedOperationError",
]
