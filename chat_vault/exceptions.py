"""Exception hierarchy for Chat Vault."""


class ChatVaultError(Exception):
    """Base class for all Chat Vault errors."""


class ConfigurationError(ChatVaultError):
    """Process configuration is missing or invalid (fatal at startup)."""


class EnvelopeError(ChatVaultError):
    """Base class for envelope seal/open failures."""


class FormatError(EnvelopeError):
    """Envelope does not split into three hex fields of the right sizes."""


class AuthenticationError(EnvelopeError):
    """Authentication tag did not verify (tampered data or wrong key)."""


class EncryptionFailure(EnvelopeError):
    """The cipher primitive refused to seal a value."""


class ValidationError(ChatVaultError):
    """Request input is missing or malformed."""


class ProviderError(ValidationError):
    """Unknown AI provider identifier."""


class ConversationNotFound(ChatVaultError):
    """Conversation does not exist or belongs to another user."""


class NotAuthenticated(ChatVaultError):
    """No user identity was attached to the request."""
