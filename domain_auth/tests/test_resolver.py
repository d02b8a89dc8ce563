import unittest

from domain_auth.errors import ConfigValidationError
from domain_auth.models import SCOPE_ONE_LEVEL, SCOPE_SUBTREE
from domain_auth.permissions import RoleRegistry
from domain_auth.resolver import ConfigResolver, populate_domain_values, split_list


class SplitListTests(unittest.TestCase):
    def test_splits_on_commas_and_whitespace(self):
        self.assertEqual(split_list("a.corp, b.corp  c.corp"), ["a.corp", "b.corp", "c.corp"])

    def test_lists_pass_through(self):
        self.assertEqual(split_list(["x", "y"]), ["x", "y"])

    def test_false_is_empty(self):
        self.assertEqual(split_list(False), [])
        self.assertEqual(split_list(None), [])
        self.assertEqual(split_list(""), [])


class PopulateDomainValuesTests(unittest.TestCase):
    def test_scalar_becomes_default_for_all(self):
        self.assertEqual(populate_domain_values("x", "default", ["A", "B"]), {"A": "x", "B": "x"})

    def test_missing_domains_take_default(self):
        result = populate_domain_values({"A": "a"}, "d", ["A", "B"])
        self.assertEqual(result, {"A": "a", "B": "d"})

    def test_does_not_mutate_input(self):
        value = {"A": "a"}
        populate_domain_values(value, "d", ["A", "B"])
        self.assertEqual(value, {"A": "a"})


class ConfigResolverTests(unittest.TestCase):
    def setUp(self):
        self.resolver = ConfigResolver()

    def test_scalar_servers_broadcast_to_every_domain(self):
        normalized = self.resolver.normalize_settings({"servers": "srv1"}, domain_list=["A", "B"])
        self.assertEqual(normalized["servers"], {"A": ["srv1"], "B": ["srv1"]})

    def test_every_setting_defined_for_every_domain(self):
        normalized = self.resolver.normalize_settings(
            {"servers": {"A": "a1 a2"}, "bind_dn": {"B": "cn=svc,dc=b"}},
            domain_list="A,B",
        )
        self.assertEqual(normalized["domain_names"], ["A", "B"])
        for setting, value in normalized.items():
            if setting in ("domain_names", "require_domain"):
                continue
            self.assertEqual(set(value.keys()), {"A", "B"}, setting)

        self.assertEqual(normalized["servers"], {"A": ["a1", "a2"], "B": []})
        self.assertEqual(normalized["bind_dn"]["A"], False)

    def test_normalization_is_idempotent(self):
        raw = {
            "domain_names": "A B",
            "servers": {"A": "a1,a2", "B": ["b1"]},
            "bind_dn": "cn=svc,dc=corp",
            "base_dn": {"A": "dc=a", "B": "dc=b"},
            "encryption_type": {"A": False, "B": "tls"},
            "map_groups": {"editors": ["cn=editors,dc=corp"]},
            "cache_group_map": "120",
            "use_local": {"B": True},
        }
        once = self.resolver.normalize_settings(raw)
        twice = self.resolver.normalize_settings(once)
        self.assertEqual(once, twice)

    def test_scalar_group_map_applies_to_each_domain(self):
        normalized = self.resolver.normalize_settings(
            {"map_groups": {"editors": ["cn=editors,dc=corp"]}},
            domain_list=["A", "B"],
        )
        self.assertEqual(
            normalized["map_groups"],
            {
                "A": {"editors": ["cn=editors,dc=corp"]},
                "B": {"editors": ["cn=editors,dc=corp"]},
            },
        )

    def test_per_domain_group_map_kept(self):
        maps = {"A": {"editors": ["cn=e,dc=a"]}, "B": {"admins": ["cn=x,dc=b"]}}
        normalized = self.resolver.normalize_settings({"map_groups": maps}, domain_list=["A", "B"])
        self.assertEqual(normalized["map_groups"], maps)

    def test_encryption_false_means_none(self):
        normalized = self.resolver.normalize_settings({"encryption_type": False}, domain_list=["A"])
        self.assertEqual(normalized["encryption_type"], {"A": "none"})

    def test_invalid_encryption_rejected(self):
        with self.assertRaises(ConfigValidationError) as ctx:
            self.resolver.normalize_settings({"encryption_type": {"A": "starttls"}}, domain_list=["A"])
        self.assertEqual(ctx.exception.key, "ldapauth-invalid-encryption")

    def test_cache_ttl_coerced_and_validated(self):
        normalized = self.resolver.normalize_settings({"cache_group_map": {"A": "120", "B": False}}, domain_list=["A", "B"])
        self.assertEqual(normalized["cache_group_map"], {"A": 120, "B": 0})

        with self.assertRaises(ConfigValidationError):
            self.resolver.normalize_settings({"cache_group_map": -5}, domain_list=["A"])

    def test_empty_domain_list_rejected(self):
        with self.assertRaises(ConfigValidationError):
            self.resolver.normalize({"domain_names": ""})

    def test_require_domain_is_global(self):
        normalized = self.resolver.normalize_settings({"require_domain": True}, domain_list=["A", "B"])
        self.assertIs(normalized["require_domain"], True)


class DomainConfigBuildTests(unittest.TestCase):
    def test_builds_complete_config(self):
        configs = ConfigResolver().normalize({
            "domain_names": ["CORP", "LAB"],
            "servers": {"CORP": "dc1 dc2", "LAB": "lab1"},
            "bind_dn": {"CORP": "cn=svc,dc=corp"},
            "bind_password": {"CORP": "s3cret"},
            "base_dn": "dc=corp",
            "search_tree": {"LAB": False},
            "use_local": {"LAB": True},
        })

        corp, lab = configs["CORP"], configs["LAB"]
        self.assertEqual(corp.servers, ("dc1", "dc2"))
        self.assertFalse(corp.anonymous)
        self.assertEqual(corp.search_scope, SCOPE_SUBTREE)
        self.assertFalse(corp.use_local_fallback)
        self.assertEqual(corp.cache_ttl, 3600)
        self.assertEqual(corp.encryption, "ssl")

        self.assertTrue(lab.anonymous)
        self.assertIsNone(lab.bind_password)
        self.assertEqual(lab.search_scope, SCOPE_ONE_LEVEL)
        self.assertTrue(lab.use_local_fallback)

    def test_group_dns_canonicalized(self):
        configs = ConfigResolver().normalize({
            "domain_names": "CORP",
            "map_groups": {"editors": ["CN=Editors,DC=Corp "], "admins": "CN=Admins,DC=Corp"},
        })
        self.assertEqual(
            dict(configs["CORP"].group_map),
            {
                "editors": frozenset({"cn=editors,dc=corp"}),
                "admins": frozenset({"cn=admins,dc=corp"}),
            },
        )

    def test_search_filter_requires_placeholder(self):
        with self.assertRaises(ConfigValidationError):
            ConfigResolver().normalize({"domain_names": "CORP", "search_filter": "(uid=%1$s)"})

    def test_non_mapping_group_map_rejected(self):
        with self.assertRaises(ConfigValidationError):
            ConfigResolver().normalize({
                "domain_names": ["A"],
                "map_groups": {"A": ["cn=editors,dc=corp"]},
            })

    def test_registry_seeded_with_all_mapped_groups(self):
        registry = RoleRegistry(group_permissions={"user": {"read": True}})
        ConfigResolver(registry=registry).normalize({
            "domain_names": ["A", "B"],
            "map_groups": {"A": {"editors": ["cn=e,dc=a"]}, "B": {"admins": ["cn=x,dc=b"]}},
        })
        self.assertTrue(registry.seeded)
        self.assertIn("editors", registry.group_permissions)
        self.assertIn("admins", registry.group_permissions)


if __name__ == "__main__":
    unittest.main()
