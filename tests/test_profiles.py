import json
import tempfile
import unittest
from pathlib import Path

from s3_client.profiles import ConnectionProfile, ProfileStorage


class FakeKeychain:
    def __init__(self):
        self.secrets = {}
        self.set_calls = []
        self.delete_calls = []

    def get_secret(self, profile_name: str) -> str:
        return self.secrets.get(profile_name, "")

    def set_secret(self, profile_name: str, secret_key: str) -> None:
        self.set_calls.append((profile_name, secret_key))
        self.secrets[profile_name] = secret_key

    def delete_secret(self, profile_name: str) -> None:
        self.delete_calls.append(profile_name)
        self.secrets.pop(profile_name, None)


class ProfileStorageTests(unittest.TestCase):
    def test_load_moves_plaintext_secret_into_keychain(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "profiles.json"
            payload = [
                {
                    "name": "minio",
                    "endpoint_url": "http://localhost:9000",
                    "access_key": "minio",
                    "secret_key": "minio123",
                    "region": "eu-west-1",
                }
            ]
            path.write_text(json.dumps(payload), encoding="utf-8")
            keychain = FakeKeychain()
            storage = ProfileStorage(path, keychain=keychain)

            profiles = storage.load()

            self.assertEqual("minio123", profiles[0].secret_key)
            self.assertEqual("eu-west-1", profiles[0].region)
            self.assertEqual([("minio", "minio123")], keychain.set_calls)
            sanitized = json.loads(path.read_text(encoding="utf-8"))
            self.assertNotIn("secret_key", sanitized[0])
            self.assertEqual("eu-west-1", sanitized[0]["region"])

    def test_load_reads_secret_from_keychain(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "profiles.json"
            payload = [{"name": "aws", "endpoint_url": "https://s3.amazonaws.com", "access_key": "AKIA"}]
            path.write_text(json.dumps(payload), encoding="utf-8")
            keychain = FakeKeychain()
            keychain.secrets["aws"] = "stored-secret"
            storage = ProfileStorage(path, keychain=keychain)

            profile = storage.get("aws")

            self.assertEqual("stored-secret", profile.secret_key)
            self.assertEqual("", profile.region)
            self.assertEqual([], keychain.set_calls)

    def test_load_skips_malformed_entries(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "profiles.json"
            payload = [{"endpoint_url": "https://one"}, "junk", {"name": "ok", "endpoint_url": "https://two"}]
            path.write_text(json.dumps(payload), encoding="utf-8")

            profiles = ProfileStorage(path, keychain=FakeKeychain()).load()

            self.assertEqual(["ok"], [profile.name for profile in profiles])

    def test_get_raises_for_unknown_profile(self):
        with tempfile.TemporaryDirectory() as tmp:
            storage = ProfileStorage(Path(tmp) / "profiles.json", keychain=FakeKeychain())

            with self.assertRaises(KeyError):
                storage.get("missing")

    def test_save_deletes_removed_keychain_entries(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "profiles.json"
            payload = [
                {"name": "alpha", "endpoint_url": "https://one", "access_key": "a"},
                {"name": "beta", "endpoint_url": "https://two", "access_key": "b"},
            ]
            path.write_text(json.dumps(payload), encoding="utf-8")
            keychain = FakeKeychain()
            storage = ProfileStorage(path, keychain=keychain)

            storage.save(
                [ConnectionProfile(name="alpha", endpoint_url="https://one", access_key="a", secret_key="secret")]
            )

            self.assertEqual(["beta"], keychain.delete_calls)
            self.assertEqual([("alpha", "secret")], keychain.set_calls)
            saved = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual([{"name": "alpha", "endpoint_url": "https://one", "access_key": "a"}], saved)


if __name__ == "__main__":
    unittest.main()
