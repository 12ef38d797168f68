"""AI agent model.

An agent is a configured persona bound to one vendor and model. Its API
key, when set, overrides the server-wide vendor key and is stored
Fernet-encrypted.
"""

from sqlalchemy import Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from polymind.infrastructure.database.models.base import (
    Base,
    SoftDeleteMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)
from polymind.shared.crypto import encrypt_secret


class AIAgent(Base, UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "ai_agents"

    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    # Free text as entered by the user; normalized at resolve time
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    model_name: Mapped[str] = mapped_column(String(100), nullable=False)
    system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    temperature: Mapped[float] = mapped_column(Float, default=0.7, nullable=False)
    max_tokens: Mapped[int] = mapped_column(Integer, default=2048, nullable=False)

    api_key_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    api_endpoint: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def set_api_key(self, plaintext: str | None) -> None:
        """Store an agent-specific key; blank clears it so the server key applies."""
        key = (plaintext or "").strip()
        self.api_key_encrypted = encrypt_secret(key) if key else None

    def __repr__(self) -> str:
        return f"<AIAgent {self.display_name} ({self.provider}/{self.model_name})>"
