import threading
import unittest
from unittest.mock import MagicMock, patch

from domain_auth.models import LocalUser
from domain_auth.store import MemoryIdentityStore, RestIdentityStore, RestIdentityStoreError


def make_response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = text
    return response


class MemoryIdentityStoreTests(unittest.TestCase):
    def setUp(self):
        self.store = MemoryIdentityStore()
        self.user = LocalUser(id=1, name="alice")

    def test_group_membership(self):
        self.store.add_group(self.user, "editors")
        self.store.add_group(self.user, "staff")
        self.store.remove_group(self.user, "staff")
        self.store.remove_group(self.user, "never-added")

        self.assertEqual(self.store.get_groups(self.user), {"editors"})

    def test_domain_record_lifecycle(self):
        self.assertIsNone(self.store.get_user_domain(self.user))
        self.store.set_user_domain(self.user, "CORP")
        self.assertEqual(self.store.get_user_domain(self.user), "CORP")

        self.assertTrue(self.store.delete_user_domain(self.user))
        self.assertFalse(self.store.delete_user_domain(self.user))

    def test_session_data_is_per_thread(self):
        self.store.set_session_attribute("ldap_auth_domain", "CORP")
        seen = []

        worker = threading.Thread(target=lambda: seen.append(self.store.get_session_attribute("ldap_auth_domain")))
        worker.start()
        worker.join()

        self.assertEqual(seen, [None])
        self.assertEqual(self.store.get_session_attribute("ldap_auth_domain"), "CORP")

        self.store.clear_session()
        self.assertIsNone(self.store.get_session_attribute("ldap_auth_domain"))


class RestIdentityStoreTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("domain_auth.store.requests.Session")
        self.session_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.http = self.session_cls.return_value

        self.store = RestIdentityStore("http://127.0.0.1:54321/", "service-key")
        self.user = LocalUser(id=42, name="alice", email="alice@corp.example", real_name="Alice")

    def test_get_groups(self):
        self.http.get.return_value = make_response(payload=[{"group_name": "editors"}, {"group_name": "staff"}])

        self.assertEqual(self.store.get_groups(self.user), {"editors", "staff"})

        args, kwargs = self.http.get.call_args
        self.assertEqual(args[0], "http://127.0.0.1:54321/rest/v1/user_groups")
        self.assertEqual(kwargs["params"]["user_id"], "eq.42")
        self.assertEqual(kwargs["headers"]["apikey"], "service-key")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer service-key")

    def test_add_and_remove_group(self):
        self.http.post.return_value = make_response(201)
        self.http.delete.return_value = make_response(204)

        self.store.add_group(self.user, "editors")
        self.store.remove_group(self.user, "admins")

        self.assertEqual(self.http.post.call_args.kwargs["json"], {"user_id": 42, "group_name": "editors"})
        self.assertEqual(self.http.delete.call_args.kwargs["params"]["group_name"], "eq.admins")

    def test_persist_user(self):
        self.http.patch.return_value = make_response(204)
        self.store.persist_user(self.user)

        body = self.http.patch.call_args.kwargs["json"]
        self.assertEqual(body["email"], "alice@corp.example")
        self.assertEqual(body["real_name"], "Alice")
        self.assertIn("updated_at", body)

    def test_domain_record(self):
        self.http.post.return_value = make_response(201)
        self.http.get.return_value = make_response(payload=[{"user_domain": "CORP"}])
        self.http.delete.return_value = make_response(200, payload=[{"user_id": 42, "user_domain": "CORP"}])

        self.store.set_user_domain(self.user, "CORP")
        self.assertIn("merge-duplicates", self.http.post.call_args.kwargs["headers"]["Prefer"])
        self.assertEqual(self.store.get_user_domain(self.user), "CORP")
        self.assertTrue(self.store.delete_user_domain(self.user))

    def test_delete_without_record(self):
        self.http.delete.return_value = make_response(200, payload=[])
        self.assertFalse(self.store.delete_user_domain(self.user))

    def test_authorization_failure(self):
        self.http.get.return_value = make_response(401)
        with self.assertRaises(PermissionError):
            self.store.get_groups(self.user)

    def test_server_error(self):
        self.http.post.return_value = make_response(500, text="boom")
        with self.assertRaises(RestIdentityStoreError):
            self.store.add_group(self.user, "editors")


if __name__ == "__main__":
    unittest.main()
