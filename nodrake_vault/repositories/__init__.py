"""Repository layer for data access."""

from .base_repository import BaseRepository
from .credential_repository import CredentialRepository
from .flow_state_repository import FlowStateRepository, FlowStateStore, InMemoryFlowStateStore

__all__ = [
    "BaseRepository",
    "CredentialRepository",
    "FlowStateRepository",
    "FlowStateStore",
    "InMemoryFlowStateStore",
]
