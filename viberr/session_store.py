# viberr/session_store.py
import copy
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List

from sqlalchemy.orm import Session

from viberr.entities import ChatSession

ALLOWED_ROLES = ("user", "assistant")


def make_message(role: str, content: str, timestamp: str | None = None) -> dict:
    if role not in ALLOWED_ROLES:
        raise ValueError(f"Unsupported message role: {role!r}")
    if not isinstance(content, str) or not content.strip():
        raise ValueError("Message content must be non-empty text")
    return {
        "role": role,
        "content": content,
        "timestamp": timestamp or datetime.now(timezone.utc).isoformat(),
    }


class SessionStore:
    """
    Append-only message logs keyed by a session slug.

    - load() on an unknown key returns [] (never raises)
    - append()/extend() only ever add to the tail
    - lock(key) serializes whole turns for one key; different keys never block
      each other
    """

    def __init__(self, namespace: str):
        self.namespace = namespace
        self._locks_guard = threading.Lock()
        # key -> [lock, number of holders or waiters]; dropped when the count hits zero
        self._locks: Dict[str, list] = {}

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        key = str(key)
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def load(self, key: str) -> List[dict]:
        raise NotImplementedError

    def save(self, key: str, messages: List[dict]) -> None:
        raise NotImplementedError

    def extend(self, key: str, messages: List[dict]) -> List[dict]:
        """
        Append several messages with a single write. Returns the new log.
        """
        key = str(key)
        with self.lock(key):
            log = self.load(key)
            log.extend(dict(m) for m in messages)
            self.save(key, log)
            return log

    def append(self, key: str, message: dict) -> List[dict]:
        return self.extend(key, [message])


class InMemorySessionStore(SessionStore):
    def __init__(self, namespace: str):
        super().__init__(namespace)
        self._items: Dict[str, List[dict]] = {}

    def load(self, key: str) -> List[dict]:
        with self.lock(str(key)):
            return copy.deepcopy(self._items.get(str(key), []))

    def save(self, key: str, messages: List[dict]) -> None:
        with self.lock(str(key)):
            self._items[str(key)] = copy.deepcopy(list(messages))


class SqlSessionStore(SessionStore):
    def __init__(self, session_factory: Callable[[], Session], namespace: str):
        super().__init__(namespace)
        self.SessionFactory = session_factory

    def load(self, key: str) -> List[dict]:
        session = self.SessionFactory()
        try:
            row = session.get(ChatSession, (self.namespace, str(key)))
            if row is None:
                return []
            return [dict(m) for m in (row.messages or [])]
        finally:
            session.close()

    def save(self, key: str, messages: List[dict]) -> None:
        session = self.SessionFactory()
        try:
            row = session.get(ChatSession, (self.namespace, str(key)))
            if row is None:
                row = ChatSession(namespace=self.namespace, session_key=str(key), messages=[])
                session.add(row)
            # assign a fresh list so the JSON column is flagged dirty
            row.messages = [dict(m) for m in messages]
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
