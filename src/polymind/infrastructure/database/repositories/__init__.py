"""Repositories implementing the chat domain's storage ports."""

from polymind.infrastructure.database.repositories.context import SqlContextStore
from polymind.infrastructure.database.repositories.messages import SqlMessageStore
from polymind.infrastructure.database.repositories.rooms import SqlRoomDirectory, to_agent_profile

__all__ = [
    "SqlContextStore",
    "SqlMessageStore",
    "SqlRoomDirectory",
    "to_agent_profile",
]
