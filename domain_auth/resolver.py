"""
Per-domain configuration normalization.

Settings arrive sparse: a scalar meant for every domain, a dict keyed by
domain that may not name them all, or a delimited string. The resolver turns
them into one complete DomainConfig per declared domain and refuses values
outside an enumerated domain.
"""

import copy
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional

from domain_auth.config import DEFAULT_SETTINGS
from domain_auth.errors import ConfigValidationError
from domain_auth.models import (
    ENCRYPTION_NONE,
    ENCRYPTION_TYPES,
    SCOPE_ONE_LEVEL,
    SCOPE_SUBTREE,
    DomainConfig,
    lower_all,
)

logger = logging.getLogger(__name__)

_SPLIT = re.compile(r'[\s,]+')


def split_list(value: Any) -> List[Any]:
    """Split a whitespace/comma delimited string; lists pass through."""
    if isinstance(value, (list, tuple)):
        return list(value)
    if value is None or value is False or value == "":
        return []
    return [part for part in _SPLIT.split(str(value)) if part]


def populate_domain_values(value: Any, default: Any, domains: List[str]) -> Dict[str, Any]:
    """
    Turn a setting value into a dict with an entry for every domain.

    A non-dict value is itself the default for every domain. Keys already
    present are kept as they are.
    """
    if not isinstance(value, dict):
        default = value
        value = {}
    else:
        value = dict(value)

    for domain in domains:
        if domain in value:
            continue
        value[domain] = copy.deepcopy(default)

    return value


class ConfigResolver:
    """
    Normalizes the raw settings bundle into per-domain configuration.

    Each setting is normalized by the function registered for it in
    self.normalizers, or by the general normalizer when none is registered.
    """

    def __init__(self, defaults: Optional[Mapping[str, Any]] = None, registry=None):
        self.defaults = dict(DEFAULT_SETTINGS if defaults is None else defaults)
        self.registry = registry
        self.normalizers: Dict[str, Callable[[str, Any, List[str]], Any]] = {
            "domain_names": self._normalize_domain_names,
            "servers": self._normalize_servers,
            "map_groups": self._normalize_map_groups,
            "encryption_type": self._normalize_encryption_type,
            "cache_group_map": self._normalize_cache_ttl,
            "require_domain": self._normalize_passthrough,
        }

    # ------------------------------------------------------------------
    # Setting normalizers
    # ------------------------------------------------------------------

    def _normalize_general(self, setting: str, value: Any, domains: List[str]) -> Dict[str, Any]:
        return populate_domain_values(value, self.defaults.get(setting), domains)

    def _normalize_passthrough(self, setting: str, value: Any, domains: List[str]) -> Any:
        return value

    def _normalize_domain_names(self, setting: str, value: Any, domains: List[str]) -> List[str]:
        return [str(d) for d in split_list(value)]

    def _normalize_servers(self, setting: str, value: Any, domains: List[str]) -> Dict[str, List[Any]]:
        values = self._normalize_general(setting, value, domains)
        return {domain: split_list(servers) for domain, servers in values.items()}

    def _normalize_map_groups(self, setting: str, value: Any, domains: List[str]) -> Dict[str, Any]:
        if not isinstance(value, dict):
            value = {}

        # Every domain already has its own map: nothing to populate
        if set(domains) <= set(value.keys()):
            return dict(value)

        populated = populate_domain_values(value, value, domains)
        return {key: val for key, val in populated.items() if key in domains}

    def _normalize_encryption_type(self, setting: str, value: Any, domains: List[str]) -> Dict[str, str]:
        values = self._normalize_general(setting, value, domains)

        for domain, encryption in values.items():
            if encryption is False or encryption is None:
                values[domain] = ENCRYPTION_NONE
            elif encryption not in ENCRYPTION_TYPES:
                raise ConfigValidationError(
                    f"Invalid encryption type \"{encryption}\"",
                    "ldapauth-invalid-encryption",
                    {"value": encryption, "domain": domain},
                )
        return values

    def _normalize_cache_ttl(self, setting: str, value: Any, domains: List[str]) -> Dict[str, int]:
        values = self._normalize_general(setting, value, domains)

        for domain, ttl in values.items():
            if ttl is False or ttl is None:
                values[domain] = 0
                continue
            try:
                ttl_int = int(ttl)
            except (TypeError, ValueError):
                ttl_int = -1
            if isinstance(ttl, bool) or ttl_int < 0:
                raise ConfigValidationError(
                    f"Invalid cache TTL \"{ttl}\" for domain {domain}",
                    params={"detail": f"cache_group_map for {domain} must be a non-negative integer"},
                )
            values[domain] = ttl_int
        return values

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def normalize_setting(self, setting: str, value: Any, domains: List[str]) -> Any:
        normalizer = self.normalizers.get(setting, self._normalize_general)
        return normalizer(setting, value, domains)

    def normalize_settings(self, raw_settings: Mapping[str, Any], domain_list: Optional[Any] = None) -> Dict[str, Any]:
        """
        Normalize every declared setting.

        Args:
            raw_settings: Setting name -> raw value; missing settings take their default
            domain_list: Domains to populate; defaults to the bundle's domain_names

        Returns:
            Setting name -> normalized value (per-domain dict for domain settings)
        """
        merged = dict(self.defaults)
        merged.update(raw_settings)
        if domain_list is not None:
            merged["domain_names"] = domain_list

        domains = self._normalize_domain_names("domain_names", merged["domain_names"], [])
        if not domains:
            raise ConfigValidationError(
                "No authentication domains declared",
                params={"detail": "domain_names is empty"},
            )

        normalized: Dict[str, Any] = {"domain_names": domains}
        for setting, value in merged.items():
            if setting == "domain_names":
                continue
            normalized[setting] = self.normalize_setting(setting, value, domains)

        logger.debug(f"Normalized {len(normalized)} setting(s) for domain(s): {', '.join(domains)}")
        return normalized

    def normalize(self, raw_settings: Mapping[str, Any], domain_list: Optional[Any] = None) -> Dict[str, DomainConfig]:
        """
        Build a complete DomainConfig for every declared domain.

        Raises:
            ConfigValidationError: a setting holds a value outside its domain
        """
        normalized = self.normalize_settings(raw_settings, domain_list)
        configs = {
            domain: self._build_domain_config(domain, normalized)
            for domain in normalized["domain_names"]
        }

        if self.registry is not None:
            mapped = set()
            for config in configs.values():
                mapped.update(config.group_map.keys())
            self.registry.seed_mapped_groups(mapped)

        logger.info(f"Loaded directory configuration for {len(configs)} domain(s)")
        return configs

    def _build_domain_config(self, domain: str, normalized: Mapping[str, Any]) -> DomainConfig:
        def value(setting):
            return normalized[setting][domain]

        group_map = {}
        domain_map = value("map_groups") or {}
        if not isinstance(domain_map, dict):
            raise ConfigValidationError(
                f"Group map for domain {domain} must be a mapping",
                params={"detail": f"map_groups for {domain} is not a mapping"},
            )
        for local_group, dns in domain_map.items():
            if isinstance(dns, str):
                dns = [dns]
            group_map[str(local_group)] = lower_all(dns or [])

        search_filter = value("search_filter")
        if not isinstance(search_filter, str) or "{username}" not in search_filter:
            raise ConfigValidationError(
                f"Search filter for domain {domain} must contain a {{username}} placeholder",
                params={"detail": f"search_filter for {domain} has no {{username}} placeholder"},
            )

        return DomainConfig(
            name=domain,
            servers=tuple(value("servers")),
            bind_dn=value("bind_dn") or None,
            bind_password=value("bind_password") or None,
            base_dn=value("base_dn") or None,
            search_filter=search_filter,
            search_scope=SCOPE_SUBTREE if value("search_tree") else SCOPE_ONE_LEVEL,
            encryption=value("encryption_type"),
            use_local_fallback=bool(value("use_local")),
            is_active_directory=bool(value("is_active_directory")),
            cache_ttl=value("cache_group_map"),
            group_map=group_map,
        )
