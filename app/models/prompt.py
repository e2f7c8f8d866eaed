import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JSONType


class Prompt(Base):
    """A reusable prompt: templates, default model config and callable catalog ids."""

    __tablename__ = "prompts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default="DRAFT", index=True)  # DRAFT | ACTIVE | ARCHIVED

    system_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    user_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    # {"name": {"type": "string", "required": true, "default": ..., "description": ...}}
    system_prompt_variables: Mapped[dict] = mapped_column(JSONType, default=dict)
    user_prompt_variables: Mapped[dict] = mapped_column(JSONType, default=dict)
    default_config: Mapped[dict] = mapped_column(JSONType, default=dict)  # provider, model, temperature, max_tokens

    available_tools: Mapped[list] = mapped_column(JSONType, default=list)
    available_activities: Mapped[list] = mapped_column(JSONType, default=list)
    available_workflows: Mapped[list] = mapped_column(JSONType, default=list)
    response_format: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    validation_required: Mapped[bool] = mapped_column(Boolean, default=False)
    validation_gate: Mapped[bool] = mapped_column(Boolean, default=False)

    execution_count: Mapped[int] = mapped_column(Integer, default=0)
    avg_response_time_ms: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    execution_logs: Mapped[list["PromptExecutionLog"]] = relationship(  # noqa: F821
        "PromptExecutionLog", back_populates="prompt", cascade="all, delete-orphan"
    )
