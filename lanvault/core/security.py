import secrets
from typing import FrozenSet, Iterable, Union

from passlib.context import CryptContext

from lanvault.core.errors import ValidationError

# API keys are 256-bit random tokens, so an unsalted one-way digest is enough
# and keeps the hash usable as a lookup column.
secret_context = CryptContext(schemes=["hex_sha256"])

PERMISSIONS = ("read", "write", "admin")
DEFAULT_PERMISSIONS = frozenset({"read", "write"})


def hash_secret(secret: str) -> str:
    """Hash API key (or any bearer secret)"""
    return secret_context.hash(secret)


def verify_secret(secret: str, hashed: str) -> bool:
    """Check a presented secret against its stored hash"""
    return secret_context.verify(secret, hashed)


def generate_api_key() -> str:
    return secrets.token_hex(32)


def parse_permissions(value: Union[str, Iterable[str], None]) -> FrozenSet[str]:
    """Normalize ``"read,write"`` or ``["read", "write"]`` into a permission set."""
    if value is None:
        return DEFAULT_PERMISSIONS
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    perms = frozenset(item.strip().lower() for item in items if item and item.strip())
    if not perms:
        raise ValidationError("At least one permission is required")
    unknown = perms - set(PERMISSIONS)
    if unknown:
        raise ValidationError(f"Unknown permission: {', '.join(sorted(unknown))}")
    return perms


def format_permissions(perms: Iterable[str]) -> str:
    perms = set(perms)
    return ",".join(p for p in PERMISSIONS if p in perms)


def has_permission(granted: Iterable[str], required: str) -> bool:
    # admin is a superset capability
    granted = set(granted)
    return "admin" in granted or required in granted
