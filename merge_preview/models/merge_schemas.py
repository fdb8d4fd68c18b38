from pydantic import BaseModel, Field

from merge_preview.models.branch import (
    ComputedAction,
    MergeOutcomeKind,
    MultiCommitOperationKind,
)


class RepositoryItem(BaseModel):
    name: str
    path: str


class RepositoryListResponse(BaseModel):
    items: list[RepositoryItem]


class BranchItem(BaseModel):
    name: str
    tip: str | None = None
    is_remote: bool = False


class BranchListResponse(BaseModel):
    repository: str
    current_branch: str
    branches: list[BranchItem]


class OpenMergeDialogRequest(BaseModel):
    operation: MultiCommitOperationKind = MultiCommitOperationKind.MERGE


class SelectBranchRequest(BaseModel):
    branch: str | None = Field(default=None, min_length=1, max_length=200)


class ActionStatusIconItem(BaseModel):
    symbol: str
    class_name: str
    spin: bool = False


class MergeDialogResponse(BaseModel):
    dialog_id: str
    repository: str
    title: str
    operation: MultiCommitOperationKind
    current_branch: str
    selected_branch: str | None = None
    status: ComputedAction | None = None
    conflicted_files: int = 0
    commit_count: int = 0
    message: str | None = None
    icon: ActionStatusIconItem | None = None
    can_start: bool = False


class MergeOutcomeResponse(BaseModel):
    dialog_id: str
    repository: str
    outcome: MergeOutcomeKind
    source_branch: str
    target_branch: str
    before_sha: str | None = None
    after_sha: str | None = None
    conflicted_files: list[str] = Field(default_factory=list)
    summary: str


class MergeHistoryItem(BaseModel):
    id: int
    source_branch: str
    target_branch: str
    squash: bool
    outcome: str
    before_sha: str | None = None
    after_sha: str | None = None
    conflicted_files: list[str] = Field(default_factory=list)
    summary: str
    merged_at: str


class MergeHistoryResponse(BaseModel):
    repository: str
    items: list[MergeHistoryItem]
