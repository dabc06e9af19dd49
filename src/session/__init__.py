from src.session.binder import SessionBinder
from src.session.factory import create_session_binder, create_session_storage
from src.session.resolution import DefaultTenantPolicy, TenantResolutionPolicy
from src.session.state import Binding, SessionStatus
from src.session.storage import MemorySessionStorage, RedisSessionStorage, SessionStorage
from src.session.store import BindingStore, SqlBindingStore

__all__ = [
    "Binding",
    "BindingStore",
    "DefaultTenantPolicy",
    "MemorySessionStorage",
    "RedisSessionStorage",
    "SessionBinder",
    "SessionStatus",
    "SessionStorage",
    "SqlBindingStore",
    "TenantResolutionPolicy",
    "create_session_binder",
    "create_session_storage",
]
