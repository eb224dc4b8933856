# Overview: Audit identity attached to every ledger, mapping and webhook write.

from __future__ import annotations

from dataclasses import dataclass

ACTOR_USER = "USER"
ACTOR_SYSTEM = "SYSTEM"

# System sources that write to the ledger
SOURCE_SQUARE_WEBHOOK = "square-webhook"
SOURCE_MANUAL_SYNC = "manual-sync"
SOURCE_CATALOG_IMPORT = "catalog-import"
SOURCE_CLI = "cli"


@dataclass(frozen=True)
class Actor:
    """
    Who performed a write: a signed-in user or a named system process.

    Stored as two columns (actor_type, actor_id) so audits can filter on
    the kind of actor without string matching.
    """
    kind: str
    ident: str

    @classmethod
    def user(cls, user_id) -> "Actor":
        if user_id is None or str(user_id).strip() == "":
            raise ValueError("user actor requires an id")
        return cls(ACTOR_USER, str(user_id).strip())

    @classmethod
    def system(cls, source: str) -> "Actor":
        if not source or not source.strip():
            raise ValueError("system actor requires a source name")
        return cls(ACTOR_SYSTEM, source.strip())

    @classmethod
    def parse(cls, value: str) -> "Actor":
        prefix, sep, rest = (value or "").partition(":")
        if not sep:
            raise ValueError(f"invalid actor: {value!r}")
        if prefix == "user":
            return cls.user(rest)
        if prefix == "system":
            return cls.system(rest)
        raise ValueError(f"invalid actor: {value!r}")

    @property
    def is_system(self) -> bool:
        return self.kind == ACTOR_SYSTEM

    def __str__(self) -> str:
        return f"{'system' if self.is_system else 'user'}:{self.ident}"
