"""Node-local device identity.

The identity is generated once, persisted as JSON under the data directory
and reused across restarts. It is passed explicitly to whatever needs it
(the ledger for self comparison, the API for discovery).
"""

import json
import logging
import os
import socket
import uuid
from pathlib import Path
from typing import Optional

from lanvault.core.clock import isoformat, utcnow
from lanvault.core.crypto import decrypt_from_peer, encrypt_for_peer, fingerprint, generate_key_pair

logger = logging.getLogger(__name__)


class DeviceIdentity:
    def __init__(self, device_id: str, device_name: str, public_key: str, secret_key: str,
                 created: Optional[str] = None):
        self.device_id = device_id
        self.device_name = device_name
        self.public_key = public_key
        self.secret_key = secret_key
        self.created = created

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.public_key)

    def seal_for(self, peer_public_key: str, message: bytes) -> bytes:
        """Encrypt ``message`` so only the holder of ``peer_public_key`` can read it."""
        return encrypt_for_peer(message, peer_public_key, self.secret_key)

    def open_from(self, peer_public_key: str, blob: bytes) -> bytes:
        return decrypt_from_peer(blob, peer_public_key, self.secret_key)

    def to_dict(self) -> dict:
        return {
            "deviceId": self.device_id,
            "deviceName": self.device_name,
            "publicKey": self.public_key,
            "secretKey": self.secret_key,
            "created": self.created,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceIdentity":
        return cls(
            device_id=data["deviceId"],
            device_name=data["deviceName"],
            public_key=data["publicKey"],
            secret_key=data["secretKey"],
            created=data.get("created"),
        )

    @classmethod
    def generate(cls, device_name: str) -> "DeviceIdentity":
        pair = generate_key_pair()
        return cls(
            device_id=str(uuid.uuid4()),
            device_name=device_name,
            public_key=pair.public_key,
            secret_key=pair.secret_key,
            created=isoformat(utcnow()),
        )

    def __repr__(self) -> str:
        return f"<DeviceIdentity {self.device_name} ({self.device_id})>"


def load_or_create_identity(path, device_name: str) -> DeviceIdentity:
    """Load the persisted identity at ``path`` or create and save a new one."""
    path = Path(path)
    if path.exists():
        try:
            identity = DeviceIdentity.from_dict(json.loads(path.read_text(encoding="utf-8")))
            logger.info("Loaded device identity: %s (%s)", identity.device_name, identity.device_id)
            return identity
        except (OSError, ValueError, KeyError) as exc:
            logger.warning("Failed to load device identity, creating new one: %s", exc)

    identity = DeviceIdentity.generate(device_name)
    path.parent.mkdir(parents=True, exist_ok=True)
    # Secret key on disk: owner read/write only
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        json.dump(identity.to_dict(), fh, indent=2)
    logger.info("Created new device identity: %s (%s)", identity.device_name, identity.device_id)
    return identity


def get_local_ip() -> str:
    """LAN address of this machine, preferring the interface used for outbound traffic."""
    try:
        # UDP connect does not send anything, it only selects a route
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        pass
    try:
        ips = socket.gethostbyname_ex(socket.gethostname())[2]
    except OSError:
        ips = []
    for ip in ips:
        if not ip.startswith("127."):
            return ip
    return "127.0.0.1"
