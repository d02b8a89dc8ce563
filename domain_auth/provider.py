"""
Primary authentication provider for per-domain directory login.

A login walks INIT -> CONNECTING -> AUTHENTICATING -> SEARCHING and ends in
PASS, ABSTAIN or FAIL. Every soft failure (unreachable servers, wrong
password, user outside the search base) is governed by the domain's single
local-fallback switch: with fallback the provider abstains so another
method can try, without it the login fails with a localized message. A
missing search base is a configuration defect and always fails.
"""

import logging
from typing import Dict, List, Mapping, Optional

from ldap3.core.exceptions import LDAPException

from domain_auth.cache import SearchCache
from domain_auth.directory import CredentialValidator, DirectoryConnector, DirectorySearch, Ldap3Client, LdapClient
from domain_auth.errors import (
    ConnectivityError,
    DirectorySearchError,
    DomainAuthError,
    MappingError,
    NotInSearchBaseError,
    UnsupportedOperationError,
)
from domain_auth.groups import GroupReconciler
from domain_auth.messages import Localizer
from domain_auth.models import (
    SESSION_DISPLAY_NAME,
    SESSION_DOMAIN,
    SESSION_EMAIL,
    AuthAction,
    AuthenticationRequest,
    AuthenticationResponse,
    AuthState,
    AuthStatus,
    DomainConfig,
    LocalUser,
    SessionAttributes,
    StatusValue,
)
from domain_auth.store import IdentityStore

logger = logging.getLogger(__name__)

ACCOUNT_CREATION_TYPE = "create"


class AuthenticationOrchestrator:
    """
    Authenticates users against their domain's directory and keeps their
    directory-mapped groups in sync after login.
    """

    def __init__(
        self,
        configs: Mapping[str, DomainConfig],
        store: IdentityStore,
        localizer: Optional[Localizer] = None,
        client: Optional[LdapClient] = None,
        cache: Optional[SearchCache] = None,
        require_domain: bool = False,
    ):
        """
        Args:
            configs: Normalized domain name -> DomainConfig
            store: Host identity store
            localizer: Message renderer (English catalog by default)
            client: Directory protocol client (ldap3 by default)
            cache: Search cache shared by group reconciliation
            require_domain: Always show the domain field, even with one domain
        """
        self.configs = configs
        self.store = store
        self.localizer = localizer or Localizer()
        self.client = client or Ldap3Client()
        self.cache = cache or SearchCache()
        self.require_domain = require_domain

        self.connector = DirectoryConnector(self.client, self.localizer)
        self.validator = CredentialValidator(self.client, self.localizer)
        self.search = DirectorySearch(self.client, self.localizer)
        self.reconciler = GroupReconciler(
            self.store,
            self.search,
            self.connector,
            self.cache,
            self.configs,
            self.localizer,
        )

    @property
    def domains(self) -> List[str]:
        return list(self.configs.keys())

    def get_authentication_requests(self, action: AuthAction) -> Dict[str, Dict]:
        """
        Describe the form fields a request for this action needs.

        With a single domain and require_domain off, the domain field is
        hidden and pre-filled.
        """
        if action is AuthAction.REMOVE:
            return {}

        fields = {
            "username": {"type": "string", "label": "username"},
            "password": {"type": "password", "label": "password", "sensitive": True},
        }
        if len(self.domains) == 1 and not self.require_domain:
            fields["domain"] = {"type": "hidden", "value": self.domains[0]}
        else:
            fields["domain"] = {"type": "select", "options": self.domains, "label": "yourdomainname"}
        return fields

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def begin_authentication(self, request: Optional[AuthenticationRequest]) -> AuthenticationResponse:
        """
        Run a login attempt.

        Returns:
            AuthenticationResponse with status PASS, ABSTAIN or FAIL
        """
        if request is None or request.action is not AuthAction.LOGIN:
            return AuthenticationResponse(AuthStatus.ABSTAIN, AuthState.INIT)

        # A new login flow starts with no directory profile
        self.store.clear_session()

        config = self.configs.get(request.domain)
        if config is None:
            # Without a DomainConfig there is no fallback switch to consult, and
            # the domain may belong to another provider: step aside for it
            logger.info(f"Abstaining: no directory domain '{request.domain}' configured")
            return AuthenticationResponse(AuthStatus.ABSTAIN, AuthState.INIT)
        if not request.username:
            return AuthenticationResponse(AuthStatus.ABSTAIN, AuthState.INIT)

        state = AuthState.CONNECTING
        connection = None
        try:
            connection = self.connector.connect(config, request.domain)

            state = AuthState.AUTHENTICATING
            self.validator.validate(connection, config, request.username, request.password)

            state = AuthState.SEARCHING
            entries = self.search.search(connection, config, request.username)

            if not entries:
                # Password verified, but the account is outside the search base
                raise NotInSearchBaseError(request.username, request.domain)

            attributes = SessionAttributes.from_entry(entries[0], request.domain)
            for key, value in attributes.as_session_data().items():
                self.store.set_session_attribute(key, value)

            logger.info(f"Directory login succeeded for {request.username}@{request.domain} as {attributes.username}")
            return AuthenticationResponse(
                AuthStatus.PASS,
                AuthState.PASS,
                username=attributes.username,
            )
        except DomainAuthError as e:
            return self._resolve_failure(config, state, e)
        except LDAPException as e:
            logger.debug(f"Unclassified directory error in state {state.value}: {type(e).__name__}: {e}")
            return self._resolve_failure(config, state, DomainAuthError(str(e)))
        finally:
            if connection is not None:
                connection.close()

    def _resolve_failure(self, config: DomainConfig, state: AuthState, error: DomainAuthError) -> AuthenticationResponse:
        message = self.localizer.render_error(error)

        if not error.hard and config.use_local_fallback:
            logger.warning(f"Directory login abstained in state {state.value}: {message}")
            return AuthenticationResponse(
                AuthStatus.ABSTAIN,
                AuthState.ABSTAIN,
                message_key=error.key,
                message_params=error.params,
            )

        logger.error(f"Directory login failed in state {state.value}: {message}")
        return AuthenticationResponse(
            AuthStatus.FAIL,
            AuthState.FAIL,
            message=message,
            message_key=error.key,
            message_params=error.params,
        )

    def post_authentication(self, user: Optional[LocalUser], response: Optional[AuthenticationResponse] = None):
        """
        Copy directory profile data onto the user and reconcile groups.

        Group reconciliation failures are logged; they never undo the login.
        Only acts on a session left by a directory PASS in this flow, and
        ends the flow by clearing it.
        """
        try:
            if user is None or (response is not None and not response.passed):
                return None

            if not self.store.get_session_attribute(SESSION_DOMAIN):
                logger.debug(f"No directory login in session for {user}; skipping post-authentication")
                return None

            display_name = self.store.get_session_attribute(SESSION_DISPLAY_NAME)
            email = self.store.get_session_attribute(SESSION_EMAIL)
            if display_name:
                user.real_name = display_name
            if email:
                user.email = email
            if not user.domain:
                user.domain = self.store.get_session_attribute(SESSION_DOMAIN)
            user.email_confirmed = True
            self.store.persist_user(user)

            try:
                return self.reconciler.sync(user)
            except (MappingError, UnsupportedOperationError) as e:
                logger.warning(f"Group sync skipped for {user}: {self.localizer.render_error(e)}")
            except (ConnectivityError, DirectorySearchError) as e:
                logger.warning(f"Group sync for {user} could not reach the directory: {self.localizer.render_error(e)}")
            return None
        finally:
            self.store.clear_session()

    # ------------------------------------------------------------------
    # Provider capabilities
    # ------------------------------------------------------------------

    def test_user_exists(self, username: str) -> bool:
        return False

    def provider_allows_property_change(self, prop: str) -> bool:
        return False

    def provider_allows_authentication_data_change(self, request: AuthenticationRequest) -> StatusValue:
        return StatusValue.fatal(self.localizer.render("ldapauth-data-change-denied"))

    def provider_revoke_access_for_user(self, username: str):
        raise UnsupportedOperationError("Revoking access")

    def provider_change_authentication_data(self, request: AuthenticationRequest, user: Optional[LocalUser] = None) -> bool:
        """
        Remove the user's domain record for a remove request.

        Raises:
            UnsupportedOperationError: any action other than remove
        """
        if request.action is not AuthAction.REMOVE:
            raise UnsupportedOperationError("Authentication data change")

        user = user or LocalUser(id=None, name=request.username)
        deleted = self.store.delete_user_domain(user)
        logger.info(f"Removed directory domain record for {user}: {deleted}")
        return deleted

    def account_creation_type(self) -> str:
        return ACCOUNT_CREATION_TYPE

    def begin_account_creation(self, user: LocalUser, creator: Optional[LocalUser] = None):
        raise UnsupportedOperationError("Account creation")

    def test_user_for_creation(self, username: str, autocreate: bool) -> StatusValue:
        """
        Check whether an account may be auto-created for username.

        Each domain is searched read-only; a hit in any domain allows creation.
        """
        if not autocreate:
            return StatusValue.fatal(self.localizer.render("ldapauth-account-create-denied"))

        for domain, config in self.configs.items():
            connection = None
            try:
                connection = self.connector.connect(config, domain)
                if self.search.search(connection, config, username):
                    logger.info(f"User {username} found in domain {domain}; creation allowed")
                    return StatusValue.good()
            except (ConnectivityError, DirectorySearchError) as e:
                logger.warning(f"Could not check {username} in domain {domain}: {self.localizer.render_error(e)}")
            finally:
                if connection is not None:
                    connection.close()

        return StatusValue.fatal(self.localizer.render("ldapauth-account-create-denied"))

    def auto_created_account(self, user: LocalUser, source: Optional[str] = None):
        """
        Record the originating domain of a freshly auto-created account.

        Runs between a directory PASS and post_authentication, so the session
        is left in place for post_authentication to consume.
        """
        domain = self.store.get_session_attribute(SESSION_DOMAIN)
        if not domain:
            logger.warning(f"Auto-created account {user} without a directory login in session")
            return

        user.domain = domain
        user.email_confirmed = True
        self.store.persist_user(user)
        self.store.set_user_domain(user, domain)
        logger.info(f"Auto-created account {user} from domain {domain}")
