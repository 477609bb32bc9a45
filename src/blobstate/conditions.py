from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .models import Concurrency


class ConditionKind(str, Enum):
    NONE = "none"
    IF_MATCH = "if-match"
    IF_NONE_MATCH = "if-none-match"


@dataclass(frozen=True)
class Condition:
    """
    Precondition attached to a write or delete request.

    - NONE: unconditional.
    - IF_MATCH: the object must exist with exactly `etag`.
    - IF_NONE_MATCH: the object must not exist (If-None-Match: *).
    """

    kind: ConditionKind = ConditionKind.NONE
    etag: Optional[str] = None

    @classmethod
    def none(cls) -> "Condition":
        return cls()

    @classmethod
    def if_match(cls, etag: str) -> "Condition":
        if not etag:
            raise ValueError("if_match requires a non-empty etag")
        return cls(kind=ConditionKind.IF_MATCH, etag=etag)

    @classmethod
    def if_none_match_any(cls) -> "Condition":
        return cls(kind=ConditionKind.IF_NONE_MATCH)

    @property
    def is_conditional(self) -> bool:
        return self.kind is not ConditionKind.NONE


def build_write_condition(etag: Optional[str], concurrency: Concurrency) -> Condition:
    """Derive the precondition for a write.

    A supplied etag always wins over the concurrency mode: the caller is saying
    "only if nothing changed since I read it". The mode only decides what to do
    when no etag is given (create-only for FIRST_WRITE, overwrite otherwise).
    """
    if etag:
        return Condition.if_match(etag)
    if Concurrency(concurrency) is Concurrency.FIRST_WRITE:
        return Condition.if_none_match_any()
    return Condition.none()


def build_delete_condition(etag: Optional[str]) -> Condition:
    if etag:
        return Condition.if_match(etag)
    return Condition.none()
