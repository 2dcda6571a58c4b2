# Import every model so Base.metadata knows all ledger tables
from lanvault.db.session import Base  # noqa: F401
from lanvault.models.api_key import ApiKey  # noqa: F401
from lanvault.models.device import Device  # noqa: F401
from lanvault.models.file import File  # noqa: F401
