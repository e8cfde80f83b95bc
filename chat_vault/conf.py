"""
Chat Vault settings names and defaults.

Values are read from the process environment by the pydantic models
that consume them (``EncryptionConfig``, ``ServerConfig``) at the moment
they are built, so tests can patch the environment freely.
"""

# Environment variable holding the 64-hex-char process encryption key.
ENCRYPTION_KEY_ENV = "ENCRYPTION_KEY"

# Request key under which the session middleware stores the user id.
USER_ID_KEY = "user_id"

# Shown in place of any message body that cannot be decrypted.
DECRYPTION_PLACEHOLDER = "[Encrypted content - decryption error]"

DSN_ENV = "CHAT_VAULT_DSN"
REDIS_URL_ENV = "CHAT_VAULT_REDIS_URL"
HOST_ENV = "CHAT_VAULT_HOST"
PORT_ENV = "CHAT_VAULT_PORT"
API_KEY_TTL_ENV = "CHAT_VAULT_API_KEY_TTL"
LOG_LEVEL_ENV = "CHAT_VAULT_LOG_LEVEL"

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_API_KEY_TTL = 3600
DEFAULT_LOG_LEVEL = "INFO"
