"""
Tests for encryption key loading and configuration models.

Tests cover:
- Hex key validation (length, alphabet, absence)
- EncryptionConfig byte-length enforcement and immutability
- Environment loading for EncryptionConfig and ServerConfig
"""
import importlib

import pytest

from chat_vault import conf
from chat_vault.exceptions import ConfigurationError
from chat_vault.vault.config import (
    EncryptionConfig,
    ServerConfig,
    load_encryption_key,
    generate_encryption_key,
)

from .conftest import KEY_A


# --- Test load_encryption_key ---

class TestLoadEncryptionKey:
    """Tests for hex key decoding."""

    def test_valid_key_decodes_to_32_bytes(self):
        """Test a 64-char hex key decodes to 32 bytes."""
        key = load_encryption_key(KEY_A)
        assert key == bytes.fromhex(KEY_A)
        assert len(key) == 32

    def test_uppercase_hex_accepted(self):
        """Test uppercase hex digits are accepted."""
        assert load_encryption_key(KEY_A.upper()) == bytes.fromhex(KEY_A)

    @pytest.mark.parametrize("value", ["ab" * 31, "ab" * 33, "abc"])
    def test_wrong_length_rejected(self, value):
        """Test 31-byte, 33-byte and odd-length keys fail."""
        with pytest.raises(ConfigurationError):
            load_encryption_key(value)

    def test_non_hex_rejected(self):
        """Test a 64-char key with non-hex characters fails."""
        with pytest.raises(ConfigurationError, match="hexadecimal"):
            load_encryption_key("zz" * 32)

    def test_missing_env_rejected(self, monkeypatch):
        """Test absence of ENCRYPTION_KEY fails."""
        monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
        with pytest.raises(ConfigurationError, match="not set"):
            load_encryption_key()

    def test_empty_env_rejected(self, monkeypatch):
        """Test an empty ENCRYPTION_KEY fails."""
        monkeypatch.setenv("ENCRYPTION_KEY", "")
        with pytest.raises(ConfigurationError):
            load_encryption_key()

    def test_error_does_not_echo_key(self):
        """Test the error message never contains the supplied value."""
        bad = "cd" * 33
        with pytest.raises(ConfigurationError) as exc_info:
            load_encryption_key(bad)
        assert bad not in str(exc_info.value)

    def test_generate_key_is_loadable(self):
        """Test generated keys are valid and distinct."""
        first, second = generate_encryption_key(), generate_encryption_key()
        assert len(first) == 64
        assert first != second
        assert len(load_encryption_key(first)) == 32


# --- Test EncryptionConfig ---

class TestEncryptionConfig:
    """Tests for the validated configuration model."""

    def test_exact_32_bytes_accepted(self):
        config = EncryptionConfig.from_key(b"k" * 32)
        assert config.key == b"k" * 32

    @pytest.mark.parametrize("size", [0, 16, 31, 33, 64])
    def test_other_sizes_rejected(self, size):
        """Test any key that is not 32 bytes refuses to build."""
        with pytest.raises(ConfigurationError):
            EncryptionConfig.from_key(b"k" * size)

    def test_config_is_frozen(self):
        config = EncryptionConfig.from_hex(KEY_A)
        with pytest.raises(Exception):
            config.key = b"x" * 32

    def test_repr_hides_key(self):
        config = EncryptionConfig.from_hex(KEY_A)
        assert KEY_A not in repr(config)
        assert repr(bytes.fromhex(KEY_A)) not in repr(config)

    def test_default_placeholder(self):
        config = EncryptionConfig.from_hex(KEY_A)
        assert config.placeholder == "[Encrypted content - decryption error]"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ENCRYPTION_KEY", KEY_A)
        monkeypatch.setenv("CHAT_VAULT_API_KEY_TTL", "600")
        config = EncryptionConfig.from_env()
        assert config.key == bytes.fromhex(KEY_A)
        assert config.api_key_cache_ttl == 600

    def test_from_env_rejects_short_ttl(self, monkeypatch):
        monkeypatch.setenv("ENCRYPTION_KEY", KEY_A)
        monkeypatch.setenv("CHAT_VAULT_API_KEY_TTL", "5")
        with pytest.raises(ConfigurationError):
            EncryptionConfig.from_env()

    def test_from_env_missing_key(self, monkeypatch):
        monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            EncryptionConfig.from_env()


# --- Test ServerConfig ---

class TestServerConfig:
    """Tests for server settings loaded from environment."""

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("CHAT_VAULT_DSN", "postgresql://localhost/chat")
        for name in ("CHAT_VAULT_REDIS_URL", "CHAT_VAULT_HOST",
                     "CHAT_VAULT_PORT", "CHAT_VAULT_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        server = ServerConfig.from_env()
        assert server.port == 8080
        assert server.host == "0.0.0.0"
        assert server.redis_url is None
        assert server.log_level == "INFO"

    def test_missing_dsn(self, monkeypatch):
        monkeypatch.delenv("CHAT_VAULT_DSN", raising=False)
        with pytest.raises(ConfigurationError):
            ServerConfig.from_env()

    def test_bad_port(self, monkeypatch):
        monkeypatch.setenv("CHAT_VAULT_DSN", "postgresql://localhost/chat")
        monkeypatch.setenv("CHAT_VAULT_PORT", "not-a-port")
        with pytest.raises(ConfigurationError):
            ServerConfig.from_env()

    def test_log_level_normalized(self, monkeypatch):
        monkeypatch.setenv("CHAT_VAULT_DSN", "postgresql://localhost/chat")
        monkeypatch.setenv("CHAT_VAULT_LOG_LEVEL", "debug")
        monkeypatch.delenv("CHAT_VAULT_PORT", raising=False)
        assert ServerConfig.from_env().log_level == "DEBUG"


# --- Test conf ---

class TestConf:
    """Tests for the settings module."""

    def test_user_id_key_not_taken_from_environment(self, monkeypatch):
        monkeypatch.setenv("CHAT_VAULT_USER_ID_KEY", "uid")
        importlib.reload(conf)
        assert conf.USER_ID_KEY == "user_id"
