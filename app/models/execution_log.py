import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, JSONType


class PromptExecutionLog(Base):
    """One row per execution attempt, successful or not."""

    __tablename__ = "prompt_execution_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    prompt_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("prompts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    attempt: Mapped[int] = mapped_column(Integer, default=1)

    system_variables: Mapped[dict] = mapped_column(JSONType, default=dict)
    user_variables: Mapped[dict] = mapped_column(JSONType, default=dict)
    llm_config: Mapped[dict] = mapped_column(JSONType, default=dict)
    processed_system_prompt: Mapped[str] = mapped_column(Text, default="")
    processed_user_prompt: Mapped[str] = mapped_column(Text, default="")

    response: Mapped[Any] = mapped_column(JSONType, nullable=True)
    response_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    token_usage: Mapped[dict] = mapped_column(JSONType, default=dict)
    successful: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    tool_calls: Mapped[list] = mapped_column(JSONType, default=list)
    tracing: Mapped[dict] = mapped_column(JSONType, default=dict)
    request_metadata: Mapped[dict] = mapped_column(JSONType, default=dict)

    validation_passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    validation_results: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )

    prompt: Mapped["Prompt"] = relationship("Prompt", back_populates="execution_logs")  # noqa: F821
