"""Error taxonomy shared by the storage, ledger and access layers.

Every error carries a caller-safe ``message`` and the HTTP status the API
boundary answers with. Messages never contain key material.
"""


class LanVaultError(Exception):
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthError(LanVaultError):
    status_code = 401
    default_message = "API key required"


class AuthzError(LanVaultError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(LanVaultError):
    status_code = 404
    default_message = "Not found"


class ExpiredError(LanVaultError):
    status_code = 410
    default_message = "File expired"


class ValidationError(LanVaultError):
    status_code = 400
    default_message = "Invalid request"


class CryptoError(LanVaultError):
    status_code = 500
    default_message = "Decryption failed"


class KeyFormatError(CryptoError):
    """Key or ciphertext blob is structurally unusable."""

    default_message = "Malformed key or ciphertext"


class TamperError(CryptoError):
    """Authentication tag did not verify: wrong key, corruption or tampering."""

    default_message = "Ciphertext authentication failed"


class StorageError(LanVaultError):
    status_code = 500
    default_message = "Storage failure"
