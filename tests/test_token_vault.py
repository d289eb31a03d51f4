"""
Unit Tests for the Token Vault
AES-256-GCM bundles for OAuth tokens at rest.
"""

import base64
import json
import unittest

from jira_sync.token_vault import TokenVault, TokenVaultError, generate_key
from tests.fakes import TEST_KEY


class TestTokenVault(unittest.TestCase):
    """Test token encryption and decryption."""

    def setUp(self):
        self.vault = TokenVault(TEST_KEY)

    def test_decrypts_what_it_encrypts(self):
        bundle = self.vault.encrypt('access-token-123')
        self.assertEqual(self.vault.decrypt(bundle), 'access-token-123')

    def test_bundle_layout(self):
        """96-bit nonce, 128-bit tag, base64 fields."""
        bundle = self.vault.encrypt('abc')

        self.assertEqual(set(bundle), {'iv', 'authTag', 'cipherText'})
        self.assertEqual(len(base64.b64decode(bundle['iv'])), 12)
        self.assertEqual(len(base64.b64decode(bundle['authTag'])), 16)
        self.assertEqual(len(base64.b64decode(bundle['cipherText'])), 3)

    def test_nonce_is_random_per_call(self):
        first = self.vault.encrypt('same')
        second = self.vault.encrypt('same')
        self.assertNotEqual(first['iv'], second['iv'])
        self.assertNotEqual(first['cipherText'], second['cipherText'])

    def test_tampered_tag_is_rejected(self):
        bundle = self.vault.encrypt('secret')
        tag = bytearray(base64.b64decode(bundle['authTag']))
        tag[0] ^= 0xFF
        bundle['authTag'] = base64.b64encode(bytes(tag)).decode('ascii')

        with self.assertRaises(TokenVaultError):
            self.vault.decrypt(bundle)

    def test_wrong_key_is_rejected(self):
        bundle = self.vault.encrypt('secret')
        other = TokenVault(generate_key())

        with self.assertRaises(TokenVaultError):
            other.decrypt(bundle)

    def test_missing_key_fails_at_use(self):
        """A vault without a key can be built but not used."""
        vault = TokenVault('')

        with self.assertRaises(TokenVaultError) as ctx:
            vault.encrypt('secret')
        self.assertIn('ENCRYPTION_KEY', str(ctx.exception))

        with self.assertRaises(TokenVaultError):
            vault.decrypt(self.vault.encrypt('secret'))

    def test_key_must_be_32_bytes(self):
        vault = TokenVault(base64.b64encode(b'short').decode('ascii'))
        with self.assertRaises(TokenVaultError):
            vault.encrypt('secret')

    def test_json_round_trip_for_storage(self):
        payload = self.vault.encrypt_to_json('refresh-token')

        self.assertEqual(set(json.loads(payload)), {'iv', 'authTag', 'cipherText'})
        self.assertEqual(self.vault.decrypt_from_json(payload), 'refresh-token')

    def test_malformed_json_payload(self):
        with self.assertRaises(TokenVaultError):
            self.vault.decrypt_from_json('not json')
        with self.assertRaises(TokenVaultError):
            self.vault.decrypt_from_json('{"iv": "AAAA"}')


if __name__ == '__main__':
    unittest.main()
