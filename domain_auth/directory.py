"""
Directory Connection, Bind and Search
=====================================
Connects to a domain's directory servers, verifies end-user credentials and
runs scoped lookups, supporting:
- Ordered server fallback (first server that accepts the bind wins)
- Plain LDAP, LDAPS and StartTLS per domain
- Anonymous or service-account (bind DN) search binds
- Re-bind with the user's own principal (user@domain) to check a password
"""

import logging
import ssl
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from ldap3 import ALL_ATTRIBUTES, ANONYMOUS, LEVEL, NONE, SIMPLE, SUBTREE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPBindError, LDAPException
from ldap3.utils.conv import escape_filter_chars

from domain_auth.errors import ConnectivityError, CredentialError, DirectorySearchError, SearchBaseMissingError
from domain_auth.messages import Localizer
from domain_auth.models import (
    ENCRYPTION_SSL,
    ENCRYPTION_TLS,
    SCOPE_ONE_LEVEL,
    DomainConfig,
    directory_entry,
)

logger = logging.getLogger(__name__)

# Attributes read for the login lookup
LOGIN_ATTRIBUTES = [
    "sAMAccountName",
    "givenName",    # first name
    "sn",           # last name
    "displayName",
    "mail",
]

MEMBERSHIP_ATTRIBUTE = "memberOf"


class LdapClient:
    """
    Directory protocol used by the authentication core.

    Implementations raise ldap3 LDAPException subclasses on failure.
    """

    def connect(self, host: str, encryption: str) -> Any:
        raise NotImplementedError

    def bind(self, handle: Any, user: Optional[str], password: Optional[str]):
        raise NotImplementedError

    def query(self, handle: Any, base_dn: str, search_filter: str, scope: str, attributes: Sequence[str]) -> List:
        raise NotImplementedError

    def close(self, handle: Any):
        pass


class Ldap3Client(LdapClient):
    """LdapClient backed by the ldap3 library."""

    def __init__(
        self,
        connect_timeout: int = 10,
        receive_timeout: int = 30,
        tls_validate: bool = True,
        ca_certs_file: Optional[str] = None,
    ):
        """
        Args:
            connect_timeout: Socket connect timeout in seconds
            receive_timeout: Per-operation receive timeout in seconds
            tls_validate: Verify the server certificate for ssl/tls
            ca_certs_file: Path to CA certificate file for validation
        """
        self.connect_timeout = connect_timeout
        self.receive_timeout = receive_timeout
        self.tls_validate = tls_validate
        self.ca_certs_file = ca_certs_file

    def _tls(self) -> Tls:
        return Tls(
            validate=ssl.CERT_REQUIRED if self.tls_validate else ssl.CERT_NONE,
            ca_certs_file=self.ca_certs_file if self.ca_certs_file else None,
        )

    def connect(self, host: str, encryption: str) -> Connection:
        server = Server(
            host,
            use_ssl=encryption == ENCRYPTION_SSL,
            tls=self._tls() if encryption in (ENCRYPTION_SSL, ENCRYPTION_TLS) else None,
            get_info=NONE,
            connect_timeout=self.connect_timeout,
        )
        conn = Connection(
            server,
            raise_exceptions=True,
            receive_timeout=self.receive_timeout,
        )
        conn.open()
        if encryption == ENCRYPTION_TLS:
            conn.start_tls()
        return conn

    def bind(self, handle: Connection, user: Optional[str], password: Optional[str]):
        if user is None:
            ok = handle.rebind(authentication=ANONYMOUS)
        else:
            ok = handle.rebind(user=user, password=password, authentication=SIMPLE)
        if not ok:
            raise LDAPBindError(handle.result.get("description", "bind rejected") if handle.result else "bind rejected")

    def query(self, handle: Connection, base_dn: str, search_filter: str, scope: str, attributes: Sequence[str]) -> List:
        handle.search(
            search_base=base_dn,
            search_filter=search_filter,
            search_scope=LEVEL if scope == SCOPE_ONE_LEVEL else SUBTREE,
            attributes=list(attributes),
        )
        return [
            directory_entry(entry.entry_attributes_as_dict, dn=str(entry.entry_dn))
            for entry in handle.entries
        ]

    def close(self, handle: Connection):
        if not handle.closed:
            handle.unbind()


@dataclass
class DirectoryConnection:
    """A live, bound connection and where it was established"""
    handle: Any
    server: str
    encryption: str
    domain: str
    client: LdapClient = field(repr=False, default=None)

    def close(self):
        if self.client is None:
            return
        try:
            self.client.close(self.handle)
        except LDAPException as e:
            logger.debug(f"Error closing connection to {self.server}: {e}")


class DirectoryConnector:
    """Binds to the first reachable server of a domain."""

    def __init__(self, client: LdapClient, localizer: Optional[Localizer] = None):
        self.client = client
        self.localizer = localizer or Localizer()

    def connect(self, config: DomainConfig, domain: str) -> DirectoryConnection:
        """
        Try each configured server in order until one accepts the search bind.

        Args:
            config: The domain's configuration
            domain: Domain name (used in principal and messages)

        Returns:
            DirectoryConnection for the first server that bound

        Raises:
            ConnectivityError: no server accepted the bind
        """
        if config.anonymous:
            attempt_key = "ldapauth-attempt-bind-search"
            failure_key = "ldapauth-no-bind-search"
            bind_kind = ConnectivityError.NO_BIND_SEARCH
        else:
            attempt_key = "ldapauth-attempt-bind-dn-search"
            failure_key = "ldapauth-no-bind-dn-search"
            bind_kind = ConnectivityError.NO_BIND_DN_SEARCH

        params = {"dn": f"{config.bind_dn}@{domain}", "domain": domain}
        logger.info(self.localizer.render(attempt_key, params))

        bind_rejected = False
        for server in config.servers:
            if not server:
                continue

            try:
                handle = self.client.connect(server, config.encryption)
            except LDAPException as e:
                logger.info(f"Could not connect to {server}: {type(e).__name__}: {e}")
                continue

            try:
                self.client.bind(handle, config.bind_dn, config.bind_password)
            except LDAPException as e:
                bind_rejected = True
                logger.info(self.localizer.render(failure_key, dict(params, server=server)))
                logger.debug(f"{type(e).__name__}: {e}")
                try:
                    self.client.close(handle)
                except LDAPException:
                    logger.debug(f"Could not close failed connection to {server}")
                continue

            logger.info(self.localizer.render("ldapauth-bind-success", {
                "server": server,
                "enc": config.scheme,
            }))
            return DirectoryConnection(
                handle=handle,
                server=server,
                encryption=config.encryption,
                domain=domain,
                client=self.client,
            )

        message = self.localizer.render("ldapauth-no-connect", {"domain": domain})
        # Local fallback still available: not a terminal problem
        if config.use_local_fallback:
            logger.warning(message)
        else:
            logger.error(message)

        # A server answered but refused the search bind: report the bind kind
        raise ConnectivityError(
            message,
            params={"domain": domain},
            classification=bind_kind if bind_rejected else ConnectivityError.NO_CONNECT,
        )


class CredentialValidator:
    """Verifies a user's password by re-binding as that user."""

    def __init__(self, client: LdapClient, localizer: Optional[Localizer] = None):
        self.client = client
        self.localizer = localizer or Localizer()

    def validate(self, connection: DirectoryConnection, config: DomainConfig, username: str, password: str):
        """
        Re-bind the connection as ``username@domain``.

        Raises:
            CredentialError: the directory rejected the credentials
        """
        principal = f"{username}@{connection.domain}"
        params = {
            "server": connection.server,
            "enc": config.scheme,
            "username": principal,
        }
        logger.debug(self.localizer.render("ldapauth-bind-dn", params))

        try:
            if not password:
                # Empty password is an unauthenticated bind
                raise LDAPBindError("empty password")
            self.client.bind(connection.handle, principal, password)
        except LDAPException as e:
            message = self.localizer.render("wrongpassword", params)
            if config.use_local_fallback:
                logger.warning(f"{message} ({principal} via {connection.server})")
            else:
                logger.error(f"{message} ({principal} via {connection.server})")
            logger.debug(f"{type(e).__name__}: {e}")

            raise CredentialError(message, params=params)


class DirectorySearch:
    """Runs filtered lookups beneath a domain's base DN."""

    def __init__(self, client: LdapClient, localizer: Optional[Localizer] = None):
        self.client = client
        self.localizer = localizer or Localizer()

    def build_filter(self, config: DomainConfig, filter_arg: str) -> str:
        return config.search_filter.format(username=escape_filter_chars(filter_arg))

    def search(
        self,
        connection: DirectoryConnection,
        config: DomainConfig,
        filter_arg: str,
        attributes: Sequence[str] = tuple(LOGIN_ATTRIBUTES),
        raw_filter: bool = False,
    ) -> List:
        """
        Search the domain's base DN.

        Args:
            connection: Bound directory connection
            config: The domain's configuration
            filter_arg: Value substituted into the search filter template,
                or the complete filter when raw_filter is set
            attributes: Attributes to return (ALL_ATTRIBUTES for everything)
            raw_filter: Use filter_arg verbatim instead of the template

        Returns:
            List of DirectoryEntry

        Raises:
            SearchBaseMissingError: no base DN configured for the domain
            DirectorySearchError: the directory failed the query
        """
        if not config.base_dn:
            error = SearchBaseMissingError(connection.domain)
            logger.error(self.localizer.render_error(error))
            raise error

        search_filter = filter_arg if raw_filter else self.build_filter(config, filter_arg)
        logger.debug(f"Search base: {config.base_dn}")
        logger.debug(f"Search filter: {search_filter} (scope={config.search_scope})")

        try:
            entries = self.client.query(
                connection.handle,
                config.base_dn,
                search_filter,
                config.search_scope,
                list(attributes),
            )
        except LDAPException as e:
            logger.debug(f"{type(e).__name__}: {e}")
            raise DirectorySearchError(
                f"Search {search_filter} failed: {e}",
                params={"domain": connection.domain, "filter": search_filter},
            )

        logger.info(f"Directory search in {connection.domain} returned {len(entries)} entr{'y' if len(entries) == 1 else 'ies'}")
        return entries


__all__ = [
    "ALL_ATTRIBUTES",
    "LOGIN_ATTRIBUTES",
    "MEMBERSHIP_ATTRIBUTE",
    "CredentialValidator",
    "DirectoryConnection",
    "DirectoryConnector",
    "DirectorySearch",
    "Ldap3Client",
    "LdapClient",
]
