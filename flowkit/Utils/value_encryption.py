"""
Encryption for values stored in the state store's secure bucket.

Uses AES-256-CBC encryption with HMAC-SHA256 authentication and PBKDF2 key derivation.
Each value carries its own salt, so the stored string is self-contained:

    enc:<base64 salt>$<base64 VERSION || IV || CIPHERTEXT || HMAC>
"""
import base64
import hashlib
import hmac
import json
from typing import Any, Tuple

from Cryptodome.Cipher import AES
from Cryptodome.Hash import SHA256
from Cryptodome.Protocol.KDF import PBKDF2
from Cryptodome.Random import get_random_bytes
from Cryptodome.Util.Padding import pad, unpad
from loguru import logger


class ValueEncryption:
    """Encrypts JSON-serializable values with a passphrase."""

    ENCRYPTION_PREFIX = "enc:"
    SALT_SIZE = 16
    KEY_SIZE = 32   # 256 bits for AES-256
    HMAC_KEY_SIZE = 32
    BLOCK_SIZE = 16
    MAC_SIZE = 32
    VERSION = 1

    def __init__(self, iterations: int = 100000):
        self.iterations = iterations

    def derive_keys(self, passphrase: str, salt: bytes) -> Tuple[bytes, bytes]:
        """Derive encryption and HMAC keys from passphrase and salt using PBKDF2."""
        master_key = PBKDF2(
            passphrase.encode('utf-8'),
            salt,
            dkLen=self.KEY_SIZE + self.HMAC_KEY_SIZE,
            count=self.iterations,
            hmac_hash_module=SHA256
        )
        return master_key[:self.KEY_SIZE], master_key[self.KEY_SIZE:]

    def is_encrypted(self, value: Any) -> bool:
        return isinstance(value, str) and value.startswith(self.ENCRYPTION_PREFIX)

    def encrypt(self, value: Any, passphrase: str) -> str:
        """Serialize `value` to JSON and encrypt it."""
        salt = get_random_bytes(self.SALT_SIZE)
        encryption_key, hmac_key = self.derive_keys(passphrase, salt)
        iv = get_random_bytes(self.BLOCK_SIZE)

        cipher = AES.new(encryption_key, AES.MODE_CBC, iv)
        plaintext = json.dumps(value).encode('utf-8')
        message = bytes([self.VERSION]) + iv + cipher.encrypt(pad(plaintext, self.BLOCK_SIZE))
        mac = hmac.new(hmac_key, message, hashlib.sha256).digest()

        salt_b64 = base64.b64encode(salt).decode('ascii')
        body_b64 = base64.b64encode(message + mac).decode('ascii')
        return f"{self.ENCRYPTION_PREFIX}{salt_b64}${body_b64}"

    def decrypt(self, encrypted_value: str, passphrase: str) -> Any:
        """
        Decrypt a value produced by `encrypt`.

        Raises:
            ValueError: If the value is malformed, tampered with, or the passphrase is wrong
        """
        if not self.is_encrypted(encrypted_value):
            raise ValueError("Value is not encrypted")
        try:
            salt_b64, body_b64 = encrypted_value[len(self.ENCRYPTION_PREFIX):].split("$", 1)
            salt = base64.b64decode(salt_b64)
            combined = base64.b64decode(body_b64)

            # version + IV + at least one block + HMAC
            if len(combined) < 1 + self.BLOCK_SIZE * 2 + self.MAC_SIZE:
                raise ValueError("Invalid encrypted data length")
            message, stored_mac = combined[:-self.MAC_SIZE], combined[-self.MAC_SIZE:]

            encryption_key, hmac_key = self.derive_keys(passphrase, salt)
            expected_mac = hmac.new(hmac_key, message, hashlib.sha256).digest()
            # Constant-time comparison
            if not hmac.compare_digest(stored_mac, expected_mac):
                raise ValueError("HMAC verification failed")
            if message[0] != self.VERSION:
                raise ValueError(f"Unsupported encryption version {message[0]}")

            iv = message[1:1 + self.BLOCK_SIZE]
            cipher = AES.new(encryption_key, AES.MODE_CBC, iv)
            plaintext = unpad(cipher.decrypt(message[1 + self.BLOCK_SIZE:]), self.BLOCK_SIZE)
            return json.loads(plaintext.decode('utf-8'))
        except Exception as e:
            logger.error(f"Decryption failed: {e}")
            raise ValueError("Failed to decrypt value. Invalid passphrase or corrupted data.") from e
