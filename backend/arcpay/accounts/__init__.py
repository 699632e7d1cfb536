"""
Payer session keys and custodial wallet bookkeeping.
"""

from .session_keys import (
    InMemorySessionStore,
    SessionKeyVault,
    SessionRecord,
    SessionService,
    SessionStore,
    generate_session_key,
)

__all__ = [
    "InMemorySessionStore",
    "SessionKeyVault",
    "SessionRecord",
    "SessionService",
    "SessionStore",
    "generate_session_key",
]
