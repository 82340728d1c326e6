"""
In-memory collaborators for tests and single-process hosts

- InMemoryMessageStore: MessageStore and ConversationStore in one object
- InMemoryCredentialVault: dict-backed CredentialVault
- EnvCredentialVault: read-only vault over environment variables
"""

import asyncio
import os
from typing import Dict, List, Optional

from .protocols import MessageRecord


class InMemoryMessageStore:
    """Insertion-ordered message records per conversation"""

    def __init__(self):
        self._records: Dict[str, List[MessageRecord]] = {}
        self._lock = asyncio.Lock()

    async def insert(self, record: MessageRecord) -> None:
        async with self._lock:
            self._records.setdefault(record.conversation_id, []).append(record)

    async def get_messages(self, conversation_id: str) -> List[MessageRecord]:
        async with self._lock:
            return list(self._records.get(conversation_id, []))

    async def delete_conversation(self, conversation_id: str) -> None:
        async with self._lock:
            self._records.pop(conversation_id, None)

    def records(self, conversation_id: str) -> List[MessageRecord]:
        """Synchronous snapshot, handy in tests"""
        return list(self._records.get(conversation_id, []))


class InMemoryCredentialVault:
    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self._secrets: Dict[str, str] = dict(secrets or {})

    def get_secret(self, key: str) -> Optional[str]:
        return self._secrets.get(key)

    def save_secret(self, key: str, value: str) -> None:
        self._secrets[key] = value

    def delete_secret(self, key: str) -> None:
        self._secrets.pop(key, None)


class EnvCredentialVault:
    """
    Vault reading secrets from environment variables.

    Key ``openai_api_key`` maps to ``OPENAI_API_KEY`` (with an optional
    prefix). Writes are rejected.
    """

    def __init__(self, prefix: str = ""):
        self.prefix = prefix

    def _env_name(self, key: str) -> str:
        return f"{self.prefix}{key}".upper()

    def get_secret(self, key: str) -> Optional[str]:
        return os.environ.get(self._env_name(key))

    def save_secret(self, key: str, value: str) -> None:
        raise NotImplementedError("EnvCredentialVault is read-only")

    def delete_secret(self, key: str) -> None:
        raise NotImplementedError("EnvCredentialVault is read-only")
