"""Service layer shared by the clients: storage, credentials and the event bus."""

from .credential_store import CredentialStore  # noqa: F401
from .event_bus import EventBus  # noqa: F401
from .storage import JsonFileStore, KeyValueStore, MemoryStore  # noqa: F401
