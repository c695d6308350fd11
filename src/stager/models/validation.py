"""Validation result model shared by policy rules and event subscribers."""

from typing import Iterable, Optional

from pydantic import BaseModel, Field, model_validator

from stager.models.status import SeverityEnum


class ValidationResult(BaseModel):
    """A single finding with a severity and one or more messages.

    A result with more than one message must carry a summary, so that UIs can
    render a headline followed by the details.
    """

    severity: SeverityEnum = Field(..., description="OK, WARNING or ERROR")
    messages: list[str] = Field(default_factory=list, description="Ordered messages")
    summary: Optional[str] = Field(None, description="Headline for multi-message results")

    @model_validator(mode="after")
    def summary_required_for_many_messages(self) -> "ValidationResult":
        if self.severity != SeverityEnum.OK and not self.messages:
            raise ValueError("A non-OK validation result must have at least one message")
        if len(self.messages) > 1 and not self.summary:
            raise ValueError("A validation result with multiple messages must have a summary")
        return self

    @classmethod
    def create_error(
        cls, messages: Iterable[str], summary: Optional[str] = None
    ) -> "ValidationResult":
        return cls(severity=SeverityEnum.ERROR, messages=list(messages), summary=summary)

    @classmethod
    def create_warning(
        cls, messages: Iterable[str], summary: Optional[str] = None
    ) -> "ValidationResult":
        return cls(severity=SeverityEnum.WARNING, messages=list(messages), summary=summary)

    @classmethod
    def create_ok(cls) -> "ValidationResult":
        return cls(severity=SeverityEnum.OK)

    @staticmethod
    def get_overall_severity(results: Iterable["ValidationResult"]) -> SeverityEnum:
        """Return the worst severity among results (OK when there are none)."""
        return max((r.severity for r in results), default=SeverityEnum.OK)

    @staticmethod
    def has_errors(results: Iterable["ValidationResult"]) -> bool:
        return ValidationResult.get_overall_severity(results) == SeverityEnum.ERROR

    def to_payload(self) -> dict:
        """Serialize for HTTP/CLI payloads with a readable severity name."""
        return {
            "severity": self.severity.name.lower(),
            "summary": self.summary,
            "messages": list(self.messages),
        }
