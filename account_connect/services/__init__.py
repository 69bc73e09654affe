"""Service layer exports."""

from .connection_status import ConnectionStatusReporter
from .pending_states import PendingStateStore
from .provider_registry import ProviderRegistry
from .token_cipher import TokenCipherService, TokenDecryptionError
from .token_lifecycle import TokenLifecycleManager
from .token_store import RecordBackend, TokenStore

__all__ = [
    "ConnectionStatusReporter",
    "PendingStateStore",
    "ProviderRegistry",
    "RecordBackend",
    "TokenCipherService",
    "TokenDecryptionError",
    "TokenLifecycleManager",
    "TokenStore",
]
