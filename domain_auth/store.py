"""
Identity stores - local accounts, group membership and login session data

Two backends:
- MemoryIdentityStore: in-process, for the operator check script and tests
- RestIdentityStore: Supabase/PostgREST tables over requests

Authentication session data lives only for the duration of a login flow.
Each login runs on its own thread, so session data is kept thread-local.
"""

import logging
import threading
from typing import Any, Dict, Optional, Set

import requests

from domain_auth.models import LocalUser
from domain_auth.utils import _safe_json_parse, utc_now_iso

logger = logging.getLogger(__name__)


class IdentityStore:
    """Operations the authentication core needs from the host's user store."""

    def __init__(self):
        self._session = threading.local()

    # Session data -----------------------------------------------------

    def _session_data(self) -> Dict[str, Any]:
        data = getattr(self._session, "data", None)
        if data is None:
            data = {}
            self._session.data = data
        return data

    def set_session_attribute(self, key: str, value: Any):
        self._session_data()[key] = value

    def get_session_attribute(self, key: str, default: Any = None) -> Any:
        return self._session_data().get(key, default)

    def clear_session(self):
        self._session.data = {}

    # Groups / users ---------------------------------------------------

    def get_groups(self, user: LocalUser) -> Set[str]:
        raise NotImplementedError

    def add_group(self, user: LocalUser, group: str):
        raise NotImplementedError

    def remove_group(self, user: LocalUser, group: str):
        raise NotImplementedError

    def persist_user(self, user: LocalUser):
        raise NotImplementedError

    # user -> originating domain record --------------------------------

    def set_user_domain(self, user: LocalUser, domain: str):
        raise NotImplementedError

    def get_user_domain(self, user: LocalUser) -> Optional[str]:
        raise NotImplementedError

    def delete_user_domain(self, user: LocalUser) -> bool:
        raise NotImplementedError


class MemoryIdentityStore(IdentityStore):
    """Identity store held in process memory."""

    def __init__(self):
        super().__init__()
        self.lock = threading.Lock()
        self.groups: Dict[Any, Set[str]] = {}
        self.users: Dict[Any, LocalUser] = {}
        self.user_domains: Dict[Any, str] = {}

    @staticmethod
    def _key(user: LocalUser):
        return user.id if user.id is not None else user.name

    def get_groups(self, user: LocalUser) -> Set[str]:
        with self.lock:
            return set(self.groups.get(self._key(user), set()))

    def add_group(self, user: LocalUser, group: str):
        with self.lock:
            self.groups.setdefault(self._key(user), set()).add(group)

    def remove_group(self, user: LocalUser, group: str):
        with self.lock:
            self.groups.get(self._key(user), set()).discard(group)

    def persist_user(self, user: LocalUser):
        with self.lock:
            self.users[self._key(user)] = user

    def set_user_domain(self, user: LocalUser, domain: str):
        with self.lock:
            self.user_domains[self._key(user)] = domain

    def get_user_domain(self, user: LocalUser) -> Optional[str]:
        with self.lock:
            return self.user_domains.get(self._key(user))

    def delete_user_domain(self, user: LocalUser) -> bool:
        with self.lock:
            return self.user_domains.pop(self._key(user), None) is not None


class RestIdentityStoreError(RuntimeError):
    """Raised when the REST backend rejects a write"""


class RestIdentityStore(IdentityStore):
    """
    Identity store backed by Supabase/PostgREST tables.

    Tables:
        users(id, name, email, real_name, email_confirmed, updated_at)
        user_groups(user_id, group_name)
        user_ldapauth_domain(user_id, user_domain)
    """

    def __init__(self, base_url: str, service_role_key: str, verify_ssl: bool = False, timeout: int = 10):
        """
        Args:
            base_url: Supabase URL (e.g. http://127.0.0.1:54321)
            service_role_key: Service role key used for apikey and bearer auth
            verify_ssl: Whether to verify SSL certificates
            timeout: Request timeout in seconds
        """
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.service_role_key = service_role_key
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.http = requests.Session()
        self.http.verify = verify_ssl

        if not verify_ssl:
            import urllib3
            urllib3.disable_warnings()

    def _url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _check(self, response: requests.Response, context: str):
        if response.status_code in (401, 403):
            raise PermissionError(f"Supabase authorization failed while {context} (HTTP {response.status_code})")
        if response.status_code not in (200, 201, 204):
            raise RestIdentityStoreError(f"Error {context}: {response.status_code} - {response.text}")

    def get_groups(self, user: LocalUser) -> Set[str]:
        response = self.http.get(
            self._url("user_groups"),
            headers=self._headers(),
            params={"user_id": f"eq.{user.id}", "select": "group_name"},
            timeout=self.timeout,
        )
        self._check(response, f"fetching groups for {user}")
        rows = _safe_json_parse(response)
        if not isinstance(rows, list):
            raise RestIdentityStoreError(f"Unexpected group listing for {user}: {rows}")
        return {row["group_name"] for row in rows}

    def add_group(self, user: LocalUser, group: str):
        response = self.http.post(
            self._url("user_groups"),
            headers=self._headers("resolution=ignore-duplicates,return=minimal"),
            json={"user_id": user.id, "group_name": group},
            timeout=self.timeout,
        )
        self._check(response, f"adding {user} to {group}")

    def remove_group(self, user: LocalUser, group: str):
        response = self.http.delete(
            self._url("user_groups"),
            headers=self._headers("return=minimal"),
            params={"user_id": f"eq.{user.id}", "group_name": f"eq.{group}"},
            timeout=self.timeout,
        )
        self._check(response, f"removing {user} from {group}")

    def persist_user(self, user: LocalUser):
        response = self.http.patch(
            self._url("users"),
            headers=self._headers("return=minimal"),
            params={"id": f"eq.{user.id}"},
            json={
                "email": user.email,
                "real_name": user.real_name,
                "email_confirmed": user.email_confirmed,
                "updated_at": utc_now_iso(),
            },
            timeout=self.timeout,
        )
        self._check(response, f"saving user {user}")

    def set_user_domain(self, user: LocalUser, domain: str):
        response = self.http.post(
            self._url("user_ldapauth_domain"),
            headers=self._headers("resolution=merge-duplicates,return=minimal"),
            json={"user_id": user.id, "user_domain": domain},
            timeout=self.timeout,
        )
        self._check(response, f"recording domain for {user}")

    def get_user_domain(self, user: LocalUser) -> Optional[str]:
        response = self.http.get(
            self._url("user_ldapauth_domain"),
            headers=self._headers(),
            params={"user_id": f"eq.{user.id}", "select": "user_domain"},
            timeout=self.timeout,
        )
        self._check(response, f"fetching domain for {user}")
        rows = _safe_json_parse(response)
        if isinstance(rows, list) and rows:
            return rows[0].get("user_domain")
        return None

    def delete_user_domain(self, user: LocalUser) -> bool:
        response = self.http.delete(
            self._url("user_ldapauth_domain"),
            headers=self._headers("return=representation"),
            params={"user_id": f"eq.{user.id}"},
            timeout=self.timeout,
        )
        self._check(response, f"deleting domain record for {user}")
        rows = _safe_json_parse(response)
        deleted = isinstance(rows, list) and len(rows) > 0
        if not deleted:
            logger.debug(f"No domain record to delete for {user}")
        return deleted
