#!/usr/bin/env python3
"""
Directory Login Check
=====================

Runs a single directory login against the configured domains, the same way
the authentication provider does, and prints the outcome. Useful for
checking server failover, bind credentials and group maps from the shell.

Requirements:
- pip install -e .

Usage:
    python ldap-auth-check.py CORP alice
    python ldap-auth-check.py CORP alice --sync

Settings:
- LDAP_AUTH_SETTINGS_FILE points at the JSON settings bundle
- LDAP_AUTH_PASSWORD may hold the password; otherwise you are prompted
"""

import argparse
import getpass
import os
import sys

from domain_auth.config import load_settings_bundle, settings
from domain_auth.directory import Ldap3Client
from domain_auth.errors import ConfigValidationError, DomainAuthError
from domain_auth.messages import Localizer
from domain_auth.models import SESSION_EMAIL, AuthenticationRequest, LocalUser
from domain_auth.provider import AuthenticationOrchestrator
from domain_auth.resolver import ConfigResolver
from domain_auth.store import MemoryIdentityStore
from domain_auth.utils import configure_logging


def log(msg: str):
    print(msg, flush=True)


def build_localizer() -> Localizer:
    localizer = Localizer(language=settings.language)
    if settings.messages_dir and os.path.isdir(settings.messages_dir):
        for name in sorted(os.listdir(settings.messages_dir)):
            if name.endswith(".json"):
                localizer.load_catalog(os.path.join(settings.messages_dir, name))
    return localizer


def run(domain: str, username: str, sync: bool) -> bool:
    configure_logging(settings.log_level)

    localizer = build_localizer()
    raw = load_settings_bundle(settings.settings_file)
    try:
        configs = ConfigResolver().normalize(raw)
    except ConfigValidationError as e:
        log(f"ERROR: {localizer.render_error(e)}")
        return False

    store = MemoryIdentityStore()
    orchestrator = AuthenticationOrchestrator(
        configs,
        store,
        localizer=localizer,
        client=Ldap3Client(
            connect_timeout=settings.connect_timeout,
            receive_timeout=settings.receive_timeout,
            tls_validate=settings.tls_validate,
            ca_certs_file=settings.ca_certs_file,
        ),
        require_domain=bool(raw.get("require_domain")),
    )

    password = os.getenv("LDAP_AUTH_PASSWORD") or getpass.getpass(f"Password for {username}@{domain}: ")
    response = orchestrator.begin_authentication(AuthenticationRequest(domain, username, password))

    log("=" * 60)
    log(f"Result: {response.status.value.upper()} (state: {response.state.value})")
    if response.username:
        log(f"Account name: {response.username}")
    if response.message:
        log(f"Message: {response.message}")
    elif response.message_key:
        log(f"Message: {localizer.render(response.message_key, response.message_params)}")
    log("=" * 60)

    if not response.passed:
        return False

    if sync:
        user = LocalUser(
            id=None,
            name=response.username or username,
            email=store.get_session_attribute(SESSION_EMAIL),
            domain=domain,
        )
        diff = orchestrator.post_authentication(user, response)
        if diff is None:
            log("Group sync did not run (see log for details)")
        else:
            log(f"Groups to add: {', '.join(sorted(diff.to_add)) or '-'}")
            log(f"Groups to remove: {', '.join(sorted(diff.to_remove)) or '-'}")

    return True


def main():
    parser = argparse.ArgumentParser(description="Check a directory login against the configured domains")
    parser.add_argument("domain", help="Authentication domain name")
    parser.add_argument("username", help="Directory username (without @domain)")
    parser.add_argument("--sync", action="store_true", help="Also compute and apply the group map")
    args = parser.parse_args()

    try:
        success = run(args.domain, args.username, args.sync)
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        log("\nCheck interrupted by user")
        sys.exit(130)
    except (DomainAuthError, OSError, ValueError) as e:
        log(f"FATAL ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
