"""
Configuration for directory authentication.

Process settings are read from the environment (LDAP_AUTH_*). The per-domain
settings bundle is a JSON file keyed by setting name; any setting it omits
takes the declared default below.
"""

import json
import os
from typing import Any, Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Declared settings and their defaults. A scalar applies to every domain;
# a dict keyed by domain name sets per-domain values.
DEFAULT_SETTINGS: Dict[str, Any] = {
    "domain_names": [],
    "servers": False,
    "bind_dn": False,
    "bind_password": False,
    "base_dn": False,
    "search_filter": "(sAMAccountName={username})",
    "search_tree": True,
    "encryption_type": "ssl",
    "use_local": False,
    "require_domain": False,
    "map_groups": {},
    "is_active_directory": False,
    "cache_group_map": 3600,
}


class Settings(BaseSettings):
    """Process settings loaded from environment."""

    # Settings bundle
    settings_file: str = os.getenv("LDAP_AUTH_SETTINGS_FILE", "/etc/ldap-auth/settings.json")

    # Directory connections
    connect_timeout: int = int(os.getenv("LDAP_AUTH_CONNECT_TIMEOUT", "10"))
    receive_timeout: int = int(os.getenv("LDAP_AUTH_RECEIVE_TIMEOUT", "30"))
    tls_validate: bool = os.getenv("LDAP_AUTH_TLS_VALIDATE", "true").lower() == "true"
    ca_certs_file: Optional[str] = os.getenv("LDAP_AUTH_CA_CERTS_FILE") or None

    # Identity store (Supabase REST)
    dsm_url: str = os.getenv("DSM_URL", "http://127.0.0.1:54321")
    service_role_key: str = os.getenv("SERVICE_ROLE_KEY", "")
    verify_ssl: bool = os.getenv("LDAP_AUTH_VERIFY_SSL", "false").lower() == "true"

    # Logging / messages
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    language: str = os.getenv("LDAP_AUTH_LANGUAGE", "en")
    messages_dir: Optional[str] = os.getenv("LDAP_AUTH_MESSAGES_DIR") or None

    model_config = SettingsConfigDict(env_prefix="LDAP_AUTH_")


def load_settings_bundle(path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Read the settings bundle and overlay it on the declared defaults.

    Args:
        path: JSON file of setting name -> value. Missing file is an error.
        overrides: Values applied on top of the file (e.g. from a caller)

    Returns:
        Raw settings dict containing every declared setting
    """
    raw: Dict[str, Any] = dict(DEFAULT_SETTINGS)
    if path:
        with open(path, encoding="utf-8") as fp:
            loaded = json.load(fp)
        if not isinstance(loaded, dict):
            raise ValueError(f"Settings bundle {path} must be a JSON object")
        raw.update(loaded)
    if overrides:
        raw.update(overrides)
    return raw


settings = Settings()
