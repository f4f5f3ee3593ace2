import json
import os
import tempfile
import unittest

from crossbill_sync.state import ConfigStore


class TestConfigStore(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "nested", "settings.json")

    def tearDown(self):
        self.tmp.cleanup()

    def test_defaults_when_no_file(self):
        store = ConfigStore(self.path, default_base_url="http://localhost:8000/")
        self.assertEqual(store.base_url, "http://localhost:8000")
        self.assertEqual(store.api_url, "http://localhost:8000/api/v1")
        self.assertFalse(store.has_credentials())
        self.assertFalse(store.is_autosync_enabled())
        self.assertTrue(store.is_session_tracking_enabled())
        self.assertEqual(store.min_session_duration, 60)

    def test_values_survive_reload(self):
        store = ConfigStore(self.path)
        store.update_server_config("https://books.example.com/", "reader", "secret")
        store.set_tokens("acc", "ref", expires_in=3600, now=1000.0)
        self.assertTrue(store.toggle_autosync())

        reloaded = ConfigStore(self.path)
        self.assertEqual(reloaded.base_url, "https://books.example.com")
        self.assertEqual((reloaded.username, reloaded.password), ("reader", "secret"))
        self.assertEqual(reloaded.access_token, "acc")
        self.assertEqual(reloaded.refresh_token, "ref")
        self.assertEqual(reloaded.token_expires_at, 4600.0)
        self.assertTrue(reloaded.is_autosync_enabled())

    def test_update_server_config_drops_tokens(self):
        store = ConfigStore(self.path)
        store.update_server_config("http://a", "u", "p")
        store.set_tokens("acc", "ref", expires_in=60, now=0)
        store.update_server_config("http://b", "u2", "p2")
        self.assertIsNone(store.access_token)
        self.assertIsNone(store.refresh_token)
        self.assertIsNone(store.token_expires_at)

    def test_set_tokens_keeps_refresh_when_not_rotated(self):
        store = ConfigStore(self.path)
        store.set_tokens("acc-1", "ref-1", expires_in=60, now=0)
        store.set_tokens("acc-2", None, expires_in=60, now=10)
        self.assertEqual(store.access_token, "acc-2")
        self.assertEqual(store.refresh_token, "ref-1")
        self.assertEqual(store.token_expires_at, 70.0)

    def test_set_tokens_without_lifetime_uses_default(self):
        store = ConfigStore(self.path, default_token_lifetime=900)
        store.set_tokens("acc", now=100.0)
        self.assertEqual(store.token_expires_at, 1000.0)

    def test_clear_tokens(self):
        store = ConfigStore(self.path)
        store.set_tokens("acc", "ref", expires_in=60, now=0)
        store.clear_tokens()
        self.assertIsNone(ConfigStore(self.path).access_token)

    def test_corrupt_file_falls_back_to_defaults(self):
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, "w") as f:
            f.write("{not json")
        store = ConfigStore(self.path, default_base_url="http://fallback")
        self.assertEqual(store.base_url, "http://fallback")

    def test_partial_file_is_merged_with_defaults(self):
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, "w") as f:
            json.dump({"username": "reader", "autosync_enabled": True}, f)
        store = ConfigStore(self.path, default_base_url="http://fallback")
        self.assertEqual(store.username, "reader")
        self.assertTrue(store.is_autosync_enabled())
        self.assertEqual(store.base_url, "http://fallback")

    def test_persist_disabled_writes_nothing(self):
        store = ConfigStore(self.path, persist=False)
        store.update_server_config("http://a", "u", "p")
        self.assertFalse(os.path.exists(self.path))
        self.assertEqual(store.username, "u")


if __name__ == '__main__':
    unittest.main()
