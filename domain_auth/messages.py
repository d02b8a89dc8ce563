"""
Localized Message Catalog

Maps message keys used by the authentication core to user-facing text.
Parameters are named and substituted with str.format_map; a parameter the
caller did not supply is left as its {placeholder}.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# English catalog
MESSAGES: Dict[str, str] = {
    'error-unknown': 'Unknown error during directory authentication.',
    'ldapauth-attempt-bind-search': 'Attempting anonymous bind for search in domain {domain}.',
    'ldapauth-attempt-bind-dn-search': 'Attempting bind as {dn} for search.',
    'ldapauth-bind-success': 'Bound to directory server {server} ({enc}).',
    'ldapauth-no-bind-search': 'Could not bind anonymously to {server} for domain {domain}.',
    'ldapauth-no-bind-dn-search': 'Could not bind to {server} as {dn}.',
    'ldapauth-no-connect': 'Could not connect to any directory server for domain {domain}.',
    'ldapauth-bind-dn': 'Binding to {enc}://{server} as {username}.',
    'wrongpassword': 'Incorrect username or password entered. Please try again.',
    'ldapauth-no-base': 'No search base has been configured for domain {domain}.',
    'ldapauth-search-failed': 'Directory search failed for domain {domain}.',
    'password-login-forbidden': 'Use of this username and password is forbidden.',
    'noemail': 'There is no email address recorded for user "{user}".',
    'ldapauth-nodomain': 'There is no domain recorded for user "{user}".',
    'ldapauth-fetch-data': 'Fetching directory data for user "{user}".',
    'ldapauth-no-user-by-email': 'No directory user found with email "{email}".',
    'ldapauth-ran-search': 'Ran directory search "{search}" in {runtime:.4f}s.',
    'ldapauth-add-to-group': 'Adding user "{user}" to group "{group}".',
    'ldapauth-delete-from-group': 'Removing user "{user}" from group "{group}".',
    'ldapauth-not-supported': '{operation} is not supported by directory authentication.',
    'ldapauth-invalid-config': 'Directory authentication is misconfigured: {detail}',
    'ldapauth-invalid-encryption': 'Invalid encryption type "{value}" for domain {domain}.',
    'ldapauth-account-create-denied': 'Account can not be created.',
    'ldapauth-data-change-denied': 'Authentication Data Change not supported.',
}


class _KeepMissing(dict):
    def __missing__(self, key):
        return '{' + key + '}'


class Localizer:
    """
    Renders message keys into text for a single language.

    Catalogs are layered: the built-in English catalog first, then any
    language catalogs loaded from JSON on top of it.
    """

    def __init__(self, language: str = 'en', catalogs: Optional[Dict[str, Dict[str, str]]] = None):
        self.language = language
        self.catalogs: Dict[str, Dict[str, str]] = {'en': dict(MESSAGES)}
        for lang, messages in (catalogs or {}).items():
            self.catalogs.setdefault(lang, {}).update(messages)

    def load_catalog(self, path: str, language: Optional[str] = None) -> int:
        """
        Load a JSON catalog file of key -> text.

        Args:
            path: Path to the JSON file
            language: Language code; defaults to the file stem (e.g. 'de' for de.json)

        Returns:
            Number of messages loaded
        """
        catalog_path = Path(path)
        lang = language or catalog_path.stem
        with catalog_path.open(encoding='utf-8') as fp:
            messages = json.load(fp)
        if not isinstance(messages, dict):
            raise ValueError(f"Message catalog {path} must be a JSON object")
        messages = {k: v for k, v in messages.items() if not k.startswith('@')}
        self.catalogs.setdefault(lang, {}).update(messages)
        logger.debug(f"Loaded {len(messages)} message(s) for language '{lang}' from {path}")
        return len(messages)

    def _lookup(self, key: str) -> Optional[str]:
        for lang in (self.language, 'en'):
            text = self.catalogs.get(lang, {}).get(key)
            if text is not None:
                return text
        return None

    def render(self, key: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Render a message key with named parameters."""
        template = self._lookup(key)
        if template is None:
            return f"⧼{key}⧽"
        try:
            return template.format_map(_KeepMissing(params or {}))
        except (ValueError, TypeError):
            # Format spec did not fit the supplied value (e.g. a str for {runtime:.4f})
            return template

    def render_error(self, error) -> str:
        """Render the localization carried by a DomainAuthError."""
        return self.render(error.key, error.params)
