"""Key-value storage for settings, snippets, contacts, prompts and history."""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from redis.asyncio import Redis as AsyncRedis, from_url as redis_from_url

from .models import Provider

SETTINGS_KEY = "momSettings"
SNIPPETS_KEY = "momSnippets"
CONTACTS_KEY = "momContacts"
HISTORY_KEY = "momMeetingHistory"
PROMPTS_KEY = "momPrompts"

MAX_HISTORY_ITEMS = 50
SNIPPET_MARKER = re.compile(r"\[USE_SNIPPET: (.*?)\]")


class KeyValueStore(Protocol):
    """Interface for JSON-serialisable key-value persistence."""

    async def get(self, key: str) -> Optional[Any]:
        """Retrieve the stored value for the given key."""

    async def set(self, key: str, value: Any) -> None:
        """Store a value."""

    async def delete(self, key: str) -> None:
        """Remove a stored value."""


class InMemoryStore(KeyValueStore):
    """Simple in-memory store primarily for testing or local runs."""

    def __init__(self) -> None:
        self._storage: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[Any]:
        value = self._storage.get(key)
        return None if value is None else json.loads(value)

    async def set(self, key: str, value: Any) -> None:
        self._storage[key] = json.dumps(value)

    async def delete(self, key: str) -> None:
        self._storage.pop(key, None)


class RedisStore(KeyValueStore):
    """Redis-backed store so several callers can share saved data."""

    def __init__(
        self,
        *,
        url: Optional[str] = None,
        prefix: str,
        redis_client: Optional[AsyncRedis] = None,
    ) -> None:
        if redis_client is None and url is None:
            raise ValueError("RedisStore requires either a redis_client or url")
        self._url = url
        self._client: Optional[AsyncRedis] = redis_client
        self._prefix = prefix.rstrip(":")

    async def _client_or_create(self) -> AsyncRedis:
        if self._client is None:
            assert self._url is not None
            self._client = redis_from_url(self._url, decode_responses=False)
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        client = await self._client_or_create()
        value = await client.get(self._key(key))
        if not value:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return json.loads(value)

    async def set(self, key: str, value: Any) -> None:
        client = await self._client_or_create()
        await client.set(self._key(key), json.dumps(value))

    async def delete(self, key: str) -> None:
        client = await self._client_or_create()
        await client.delete(self._key(key))

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


@dataclass
class Settings:
    """Active provider selection and the caller's own API key."""

    provider: str = Provider.GEMINI.value
    model: str = "gemini-2.0-flash-exp"
    api_key: str = field(default="", repr=False)

    def to_payload(self) -> Dict[str, str]:
        return {"provider": self.provider, "model": self.model, "apiKey": self.api_key}


class SettingsStore:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def get(self) -> Settings:
        raw = await self._store.get(SETTINGS_KEY)
        if not isinstance(raw, dict):
            return Settings()
        defaults = Settings()
        return Settings(
            provider=raw.get("provider") or defaults.provider,
            model=raw.get("model") or defaults.model,
            api_key=raw.get("apiKey") or "",
        )

    async def set(self, settings: Settings) -> None:
        await self._store.set(SETTINGS_KEY, settings.to_payload())


@dataclass
class Snippet:
    name: str
    content: str


class SnippetStore:
    """Named reusable text blocks referenced from notes by ``[USE_SNIPPET: name]``."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def all(self) -> List[Snippet]:
        raw = await self._store.get(SNIPPETS_KEY) or []
        return [Snippet(name=item["name"], content=item["content"]) for item in raw]

    async def add(self, name: str, content: str) -> bool:
        name, content = name.strip(), content.strip()
        if not name or not content:
            return False
        snippets = await self.all()
        snippets.append(Snippet(name=name, content=content))
        await self._save(snippets)
        return True

    async def delete(self, index: int) -> bool:
        snippets = await self.all()
        if not 0 <= index < len(snippets):
            return False
        snippets.pop(index)
        await self._save(snippets)
        return True

    async def find(self, name: str) -> Optional[Snippet]:
        for snippet in await self.all():
            if snippet.name == name:
                return snippet
        return None

    async def resolve(self, notes: str) -> Optional[Snippet]:
        """Return the snippet named by the first marker in ``notes``, if saved."""
        match = SNIPPET_MARKER.search(notes)
        if not match:
            return None
        return await self.find(match.group(1))

    async def _save(self, snippets: List[Snippet]) -> None:
        await self._store.set(SNIPPETS_KEY, [asdict(snippet) for snippet in snippets])


class ContactStore:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def all(self) -> Dict[str, str]:
        return await self._store.get(CONTACTS_KEY) or {}

    async def save(self, name: str, phone: str) -> None:
        contacts = await self.all()
        contacts[name] = phone
        await self._store.set(CONTACTS_KEY, contacts)

    async def delete(self, name: str) -> bool:
        contacts = await self.all()
        if contacts.pop(name, None) is None:
            return False
        await self._store.set(CONTACTS_KEY, contacts)
        return True


class HistoryStore:
    """Most-recent-first meeting records, capped at ``MAX_HISTORY_ITEMS``.

    Each record gets an ``id`` on insert, used by :meth:`get` and :meth:`delete`.
    """

    def __init__(self, store: KeyValueStore, *, limit: int = MAX_HISTORY_ITEMS) -> None:
        self._store = store
        self._limit = limit

    async def all(self) -> List[Dict[str, Any]]:
        return await self._store.get(HISTORY_KEY) or []

    async def add(self, meeting: Dict[str, Any]) -> Dict[str, Any]:
        record = {"id": uuid.uuid4().hex, **meeting}
        record.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        history = await self.all()
        history.insert(0, record)
        await self._store.set(HISTORY_KEY, history[: self._limit])
        return record

    async def get(self, meeting_id: str) -> Optional[Dict[str, Any]]:
        for record in await self.all():
            if record.get("id") == meeting_id:
                return record
        return None

    async def delete(self, meeting_id: str) -> bool:
        history = await self.all()
        remaining = [record for record in history if record.get("id") != meeting_id]
        if len(remaining) == len(history):
            return False
        await self._store.set(HISTORY_KEY, remaining)
        return True

    async def clear(self) -> None:
        await self._store.delete(HISTORY_KEY)


class PromptStore:
    """User overrides of the default system prompts, keyed by message type."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def all(self) -> Dict[str, str]:
        return await self._store.get(PROMPTS_KEY) or {}

    async def get(self, message_type: str) -> Optional[str]:
        return (await self.all()).get(message_type) or None

    async def set(self, message_type: str, prompt: str) -> None:
        prompts = await self.all()
        prompts[message_type] = prompt
        await self._store.set(PROMPTS_KEY, prompts)

    async def reset(self, message_type: str) -> None:
        prompts = await self.all()
        if prompts.pop(message_type, None) is not None:
            await self._store.set(PROMPTS_KEY, prompts)


def create_store(url: Optional[str], prefix: str) -> KeyValueStore:
    if url:
        return RedisStore(url=url, prefix=prefix)
    return InMemoryStore()
