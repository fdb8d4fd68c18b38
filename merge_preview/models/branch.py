from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


@dataclass(frozen=True)
class Repository:
    name: str
    path: Path


@dataclass(frozen=True)
class Branch:
    name: str
    tip: str | None = None
    is_remote: bool = False


class ComputedAction(str, Enum):
    LOADING = "loading"
    CLEAN = "clean"
    CONFLICTS = "conflicts"
    INVALID = "invalid"


@dataclass(frozen=True)
class MergeTreeResult:
    """合并预演结果。conflicted_files 仅在 kind 为 CONFLICTS 时有意义。"""

    kind: ComputedAction
    conflicted_files: int = 0

    @classmethod
    def loading(cls) -> MergeTreeResult:
        return cls(kind=ComputedAction.LOADING)

    @classmethod
    def clean(cls) -> MergeTreeResult:
        return cls(kind=ComputedAction.CLEAN)

    @classmethod
    def conflicts(cls, conflicted_files: int) -> MergeTreeResult:
        return cls(kind=ComputedAction.CONFLICTS, conflicted_files=conflicted_files)

    @classmethod
    def invalid(cls) -> MergeTreeResult:
        return cls(kind=ComputedAction.INVALID)


@dataclass(frozen=True)
class AheadBehind:
    ahead: int
    behind: int


class MultiCommitOperationKind(str, Enum):
    MERGE = "merge"
    SQUASH = "squash"


class PopupType(str, Enum):
    MULTI_COMMIT_OPERATION = "multi_commit_operation"


class MergeOutcomeKind(str, Enum):
    MERGED = "merged"
    SQUASHED = "squashed"
    UP_TO_DATE = "up_to_date"
    CONFLICTS = "conflicts"


@dataclass(frozen=True)
class MergeOutcome:
    kind: MergeOutcomeKind
    source_branch: str
    target_branch: str
    before_sha: str | None
    after_sha: str | None
    summary: str
    conflicted_files: list[str] = field(default_factory=list)
