"""
Domain Authentication Error Taxonomy

Every error raised by the authentication core carries a kind tag plus a
localization key and parameters, so callers can render a message without
knowing which component raised it.
"""

from typing import Dict, Optional


class DomainAuthError(Exception):
    """Base exception for directory authentication operations"""

    kind = "unknown"
    hard = False

    def __init__(self, message: str = "", key: str = "error-unknown", params: Optional[Dict] = None):
        self.message = message or key
        self.key = key
        self.params = dict(params or {})
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r}, key={self.key!r}, params={self.params!r})"


class ConfigValidationError(DomainAuthError):
    """Raised at startup when a setting holds a value outside its domain"""

    kind = "config"
    hard = True

    def __init__(self, message: str, key: str = "ldapauth-invalid-config", params: Optional[Dict] = None):
        super().__init__(message, key, params)


class ConnectivityError(DomainAuthError):
    """Raised when no server in a domain's list accepted a bind"""

    kind = "connectivity"

    # Classifications
    NO_CONNECT = "no-connect"
    NO_BIND_SEARCH = "no-bind-search"
    NO_BIND_DN_SEARCH = "no-bind-dn-search"

    def __init__(
        self,
        message: str = "",
        key: str = "ldapauth-no-connect",
        params: Optional[Dict] = None,
        classification: str = NO_CONNECT,
    ):
        super().__init__(message, key, params)
        self.classification = classification


class CredentialError(DomainAuthError):
    """Raised when the end-user's own bind is rejected"""

    kind = "credential"

    def __init__(self, message: str = "", key: str = "wrongpassword", params: Optional[Dict] = None):
        super().__init__(message, key, params)


class SearchBaseMissingError(DomainAuthError):
    """Raised when a domain has no base DN configured; never fallback-gated"""

    kind = "config"
    hard = True

    def __init__(self, domain: str):
        super().__init__(
            f"No base DN configured for domain \"{domain}\"",
            "ldapauth-no-base",
            {"domain": domain},
        )
        self.domain = domain


class NotInSearchBaseError(DomainAuthError):
    """Raised when the password verified but the user is outside the search base"""

    kind = "not-in-search-base"

    def __init__(self, username: str = "", domain: str = ""):
        super().__init__(
            f"User \"{username}\" is not within the search base of \"{domain}\"",
            "password-login-forbidden",
            {"username": username, "domain": domain},
        )


class DirectorySearchError(DomainAuthError):
    """Raised when the directory rejects or fails a query"""

    kind = "search"

    def __init__(self, message: str, params: Optional[Dict] = None):
        super().__init__(message, "ldapauth-search-failed", params)


class MappingError(DomainAuthError):
    """Raised when group reconciliation cannot run for a user"""

    kind = "mapping"


class UnsupportedOperationError(DomainAuthError):
    """Raised for provider operations this backend does not implement"""

    kind = "unsupported"
    hard = True

    def __init__(self, operation: str):
        super().__init__(
            f"{operation} is not supported",
            "ldapauth-not-supported",
            {"operation": operation},
        )
        self.operation = operation
