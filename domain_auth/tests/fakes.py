"""In-memory directory used by the test suites."""

from ldap3.core.exceptions import LDAPBindError, LDAPSocketOpenError

from domain_auth.directory import LdapClient
from domain_auth.models import directory_entry


def make_entry(dn="cn=alice,ou=people,dc=corp", **attributes):
    return directory_entry(attributes, dn=dn)


class FakeLdapClient(LdapClient):
    """
    Records every call; hosts in ``down`` refuse connections, binds succeed
    only for principals whose password matches ``passwords``. Anonymous binds
    succeed unless ``anonymous`` is false.
    """

    def __init__(self, down=(), passwords=None, entries=None, search_error=None, anonymous=True):
        self.down = set(down)
        self.anonymous = anonymous
        self.passwords = dict(passwords or {})
        self.entries = list(entries or [])
        self.search_error = search_error

        self.connected = []
        self.binds = []
        self.queries = []
        self.closed = []

    def connect(self, host, encryption):
        self.connected.append((host, encryption))
        if host in self.down:
            raise LDAPSocketOpenError(f"{host} unreachable")
        return {"host": host}

    def bind(self, handle, user, password):
        self.binds.append((handle["host"], user))
        if user is None:
            if not self.anonymous:
                raise LDAPBindError("anonymous bind disallowed")
            return
        if self.passwords.get(user) != password:
            raise LDAPBindError("invalidCredentials")

    def query(self, handle, base_dn, search_filter, scope, attributes):
        self.queries.append({
            "host": handle["host"],
            "base": base_dn,
            "filter": search_filter,
            "scope": scope,
            "attributes": list(attributes),
        })
        if self.search_error is not None:
            raise self.search_error
        return list(self.entries)

    def close(self, handle):
        self.closed.append(handle["host"])

    @property
    def hosts_tried(self):
        return [host for host, _enc in self.connected]
