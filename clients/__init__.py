# Infrastructure clients
# ApiClient is imported from clients.api_client directly; it depends on auth/
from clients.durable_store import DurableStore, MemoryStore
from clients.valkey_client import ValkeyClient
