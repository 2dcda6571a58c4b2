import os
import platform
import socket
from pathlib import Path
from dotenv import load_dotenv

# Ensure .env is loaded from project root even if server is started elsewhere
BASE_DIR = Path(__file__).resolve().parents[2]
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


class Settings:
    """Process configuration read from the environment.

    Keyword overrides win over the environment, which keeps tests and
    embedded servers away from ``os.environ``.
    """

    def __init__(self, **overrides):
        # Application
        self.PROJECT_NAME: str = os.getenv("PROJECT_NAME", "LAN Vault")
        self.API_PREFIX: str = os.getenv("API_PREFIX", "/api")
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()
        self.HOST: str = os.getenv("HOST", "0.0.0.0")
        self.PORT: int = int(os.getenv("PORT", "8080"))
        # Strip values to avoid accidental whitespace or surrounding quotes from .env
        self.CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*").strip()

        # Database
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./data/lanvault.db")
        self.DB_ECHO: bool = _env_bool("DB_ECHO", "false")

        # Node identity
        self.DATA_DIR: str = os.getenv("DATA_DIR", "./data")
        self.IDENTITY_PATH: str = os.getenv("IDENTITY_PATH", "")
        self.DEVICE_NAME: str = (
            os.getenv("DEVICE_NAME") or f"{socket.gethostname()}-{platform.system().lower()}"
        ).strip()

        # Encrypted storage
        self.STORAGE_DIR: str = os.getenv("STORAGE_DIR", "./uploads")
        self.STAGING_DIR: str = os.getenv("STAGING_DIR", "")
        self.MAX_FILE_SIZE: int = int(os.getenv("MAX_FILE_SIZE", str(500 * 1024 * 1024)))
        # Seconds; applied when an upload asks for no expiry. 0 keeps files forever.
        self.MAX_FILE_AGE: int = int(os.getenv("MAX_FILE_AGE", "0"))
        # Seconds between background sweeps. 0 disables the sweeper.
        self.CLEANUP_INTERVAL: int = int(os.getenv("CLEANUP_INTERVAL", "0"))

        # Security
        self.API_KEY: str = os.getenv("API_KEY", "").strip()

        # SSL (certificates are provisioned outside this service)
        self.SSL_CERT_FILE: str = os.getenv("SSL_CERT_FILE", "certs/server.crt")
        self.SSL_KEY_FILE: str = os.getenv("SSL_KEY_FILE", "certs/server.key")

        for name, value in overrides.items():
            if not hasattr(self, name):
                raise AttributeError(f"Unknown setting: {name}")
            setattr(self, name, value)

        if not self.IDENTITY_PATH:
            self.IDENTITY_PATH = os.path.join(self.DATA_DIR, "device-identity.json")
        if not self.STAGING_DIR:
            self.STAGING_DIR = os.path.join(self.STORAGE_DIR, ".staging")

    def get_cors_origins_list(self):
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
