from sandbox_pool.core.config import Settings, StoreConfig, get_settings
from sandbox_pool.db.store import LeaseStore

__all__ = ["LeaseStore", "Settings", "StoreConfig", "get_settings"]

__version__ = "0.1.0"
