"""
Directory Group Reconciliation

Keeps a user's directory-mapped local groups in step with the directory:
- Directory group identifiers (DNs) are compared case-insensitively; they are
  lower-cased where they enter (group map config and memberOf values)
- Local group names are compared exactly
- Only groups named in the domain's group map are ever added or removed
"""

import logging
import threading
import time
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Set, Tuple

from ldap3.utils.conv import escape_filter_chars

from domain_auth.cache import SearchCache
from domain_auth.directory import ALL_ATTRIBUTES, MEMBERSHIP_ATTRIBUTE, DirectoryConnector, DirectorySearch
from domain_auth.errors import MappingError, UnsupportedOperationError
from domain_auth.messages import Localizer
from domain_auth.models import DomainConfig, GroupDiff, LocalUser, lower_all
from domain_auth.store import IdentityStore

logger = logging.getLogger(__name__)

CACHE_PREFIX = "ldapauth-groups"

ForwardMap = Dict[str, FrozenSet[str]]
ReverseMap = Dict[str, FrozenSet[str]]


def build_group_maps(group_map: Mapping[str, Iterable[str]]) -> Tuple[ForwardMap, ReverseMap]:
    """
    Build forward (local group -> directory DNs) and reverse
    (directory DN -> local groups) maps from a domain's group map. One DN
    may grant several local groups.
    """
    forward: ForwardMap = {}
    reverse: Dict[str, Set[str]] = {}
    for local_group, dns in group_map.items():
        canonical = lower_all(dns)
        forward[local_group] = canonical
        for dn in canonical:
            reverse.setdefault(dn, set()).add(local_group)
    return forward, {dn: frozenset(groups) for dn, groups in reverse.items()}


def compute_group_diff(
    forward: ForwardMap,
    reverse: ReverseMap,
    ldap_groups: Set[str],
    current_groups: Set[str],
) -> GroupDiff:
    """
    Diff directory-derived membership against current local groups.

    Args:
        forward: local group -> canonical directory DNs
        reverse: canonical directory DN -> local groups it grants
        ldap_groups: canonical DNs the user is a member of
        current_groups: local groups the user has now

    Returns:
        GroupDiff of managed groups to add and to remove
    """
    should_have = set()
    for dn in ldap_groups:
        should_have.update(reverse.get(dn, ()))

    to_add = frozenset(g for g in should_have if g not in current_groups)
    to_remove = frozenset(
        g for g in current_groups
        if g in forward and g not in should_have
    )
    return GroupDiff(to_add=to_add, to_remove=to_remove)


class GroupReconciler:
    """Maps a user's directory groups onto local groups."""

    def __init__(
        self,
        store: IdentityStore,
        search: DirectorySearch,
        connector: DirectoryConnector,
        cache: SearchCache,
        configs: Mapping[str, DomainConfig],
        localizer: Optional[Localizer] = None,
    ):
        self.store = store
        self.search = search
        self.connector = connector
        self.cache = cache
        self.configs = configs
        self.localizer = localizer or Localizer()
        self._maps: Dict[str, Tuple[ForwardMap, ReverseMap]] = {}
        self._maps_lock = threading.Lock()

    def group_maps(self, domain: str) -> Tuple[ForwardMap, ReverseMap]:
        """Forward and reverse maps for a domain, built once."""
        with self._maps_lock:
            if domain not in self._maps:
                self._maps[domain] = build_group_maps(self.configs[domain].group_map)
            return self._maps[domain]

    def _domain_for(self, user: LocalUser) -> Optional[str]:
        return user.domain or self.store.get_user_domain(user)

    def _mapping_error(self, message: str, key: str, params: Dict) -> MappingError:
        logger.warning(self.localizer.render(key, params))
        return MappingError(message, key, params)

    def _require_email(self, user: LocalUser) -> str:
        if not user.email:
            raise self._mapping_error(f"No email found for \"{user}\".", "noemail", {"user": str(user)})
        return user.email

    def fetch_entry(self, user: LocalUser, config: DomainConfig):
        """
        Look up the user's directory entry by email, through the search cache.

        Raises:
            MappingError: the user has no email, or no entry has that email
            UnsupportedOperationError: the domain requires nested group chains
        """
        email = self._require_email(user)

        logger.info(self.localizer.render("ldapauth-fetch-data", {"user": str(user)}))

        search_filter = f"(mail={escape_filter_chars(email)})"
        key = f"{CACHE_PREFIX}:{config.name}:{search_filter}"

        def compute():
            connection = self.connector.connect(config, config.name)
            try:
                return self.search.search(
                    connection,
                    config,
                    search_filter,
                    attributes=[ALL_ATTRIBUTES],
                    raw_filter=True,
                )
            finally:
                connection.close()

        started = time.monotonic()
        entries = self.cache.get_or_compute(key, config.cache_ttl, compute)
        logger.debug(self.localizer.render("ldapauth-ran-search", {
            "search": search_filter,
            "runtime": time.monotonic() - started,
        }))

        if not entries:
            raise self._mapping_error(
                f"No user found by email \"{email}\".",
                "ldapauth-no-user-by-email",
                {"email": email},
            )

        entry = entries[0]

        if config.is_active_directory:
            # TODO: resolve nested memberships with the LDAP_MATCHING_RULE_IN_CHAIN
            # (1.2.840.113556.1.4.1941) filter once its mapping semantics are settled
            raise UnsupportedOperationError("Nested Active Directory group mapping")

        return entry

    def reconcile(self, user: LocalUser, config: DomainConfig, entry) -> GroupDiff:
        """Compute the groups to add and remove for the user."""
        forward, reverse = self.group_maps(config.name)

        ldap_groups = set(lower_all(entry.get(MEMBERSHIP_ATTRIBUTE) or []))
        current = self.store.get_groups(user)

        logger.debug(f'memberOf: "{", ".join(sorted(ldap_groups))}"')
        logger.debug(f'In groups: "{", ".join(sorted(current))}"')

        return compute_group_diff(forward, reverse, ldap_groups, current)

    def apply(self, user: LocalUser, diff: GroupDiff):
        """Apply removals, then additions."""
        for group in sorted(diff.to_remove):
            logger.debug(self.localizer.render("ldapauth-delete-from-group", {"user": str(user), "group": group}))
            self.store.remove_group(user, group)

        for group in sorted(diff.to_add):
            logger.debug(self.localizer.render("ldapauth-add-to-group", {"user": str(user), "group": group}))
            self.store.add_group(user, group)

    def sync(self, user: LocalUser) -> GroupDiff:
        """
        Fetch the user's directory entry and bring local groups in line.

        Raises:
            MappingError: prerequisite user attributes are missing
            UnsupportedOperationError: nested group mapping was required
        """
        self._require_email(user)

        domain = self._domain_for(user)
        if not domain or domain not in self.configs:
            raise self._mapping_error(
                f"No domain found for \"{user}\".",
                "ldapauth-nodomain",
                {"user": str(user)},
            )

        config = self.configs[domain]
        entry = self.fetch_entry(user, config)
        diff = self.reconcile(user, config, entry)
        self.apply(user, diff)

        if diff.is_empty:
            logger.info(f"Groups for {user} already match directory")
        else:
            logger.info(f"Synced groups for {user}: +{len(diff.to_add)} -{len(diff.to_remove)}")
        return diff
