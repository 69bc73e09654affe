"""Expose constructed client wrappers."""

from .dynamodb import DynamoDBClient
from .oauth_provider import AccountProfile, OAuthProviderClient, TokenGrant
from .oauth_state import OAuthStateEncoder
from .sqlite_store import SQLiteStore

__all__ = [
    "AccountProfile",
    "DynamoDBClient",
    "OAuthProviderClient",
    "OAuthStateEncoder",
    "SQLiteStore",
    "TokenGrant",
]
