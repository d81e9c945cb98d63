"""Serialised record shapes written to storage."""

from __future__ import annotations

from typing import Self

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from passagenotes.annotation.store import DocumentState


class PersistedRecord(BaseModel):
    """Durable form of a document: ``{"annotated", "paragraphs", "lastModified"}``.

    ``original`` is never persisted; it is rebuilt from the passage markup on
    load.  Older records used ``highlighted`` for the annotated markup.
    """

    model_config = ConfigDict(frozen=True)

    annotated: str = Field(validation_alias=AliasChoices("annotated", "highlighted"))
    paragraphs: tuple[str, ...] = ()
    last_modified: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("lastModified", "last_modified"),
        serialization_alias="lastModified",
    )

    @classmethod
    def from_state(cls, state: DocumentState) -> Self:
        return cls(
            annotated=state.annotated,
            paragraphs=state.paragraphs,
            last_modified=state.last_modified,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> Self:
        """Parse a stored value.

        Raises:
            pydantic.ValidationError: If the value is not a valid record.
        """
        return cls.model_validate_json(raw)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class RecoveryRecord(PersistedRecord):
    """Transient state mirrored for crash recovery, including ``original``."""

    original: str = Field(validation_alias=AliasChoices("original", "raw"))

    @classmethod
    def from_state(cls, state: DocumentState) -> Self:
        return cls(
            original=state.original,
            annotated=state.annotated,
            paragraphs=state.paragraphs,
            last_modified=state.last_modified,
        )

    def to_state(self) -> DocumentState:
        return DocumentState(
            original=self.original,
            annotated=self.annotated,
            paragraphs=self.paragraphs,
            last_modified=self.last_modified,
        )
