from fastapi import APIRouter, Query, Response

from merge_preview.models.merge_schemas import (
    ActionStatusIconItem,
    BranchItem,
    BranchListResponse,
    MergeDialogResponse,
    MergeHistoryItem,
    MergeHistoryResponse,
    MergeOutcomeResponse,
    OpenMergeDialogRequest,
    RepositoryItem,
    RepositoryListResponse,
    SelectBranchRequest,
)
from merge_preview.services.git_service import git_service
from merge_preview.services.merge_dialog import MergeChooseBranchDialog
from merge_preview.services.merge_dialog_service import merge_dialog_service
from merge_preview.services.merge_history_service import merge_history_service
from merge_preview.services.repository_service import repository_service

router = APIRouter()


@router.get('/repositories', response_model=RepositoryListResponse)
def list_repositories() -> RepositoryListResponse:
    return RepositoryListResponse(
        items=[
            RepositoryItem(name=item.name, path=str(item.path))
            for item in repository_service.list_repositories()
        ]
    )


@router.get(
    '/repositories/{repository}/branches',
    response_model=BranchListResponse,
)
async def list_repository_branches(repository: str) -> BranchListResponse:
    repo = repository_service.get_repository(repository)
    current_branch = await git_service.current_branch(repo)
    branches = await git_service.list_branches(repo)
    return BranchListResponse(
        repository=repository,
        current_branch=current_branch.name,
        branches=[
            BranchItem(name=item.name, tip=item.tip, is_remote=item.is_remote)
            for item in branches
        ],
    )


@router.get(
    '/repositories/{repository}/merges',
    response_model=MergeHistoryResponse,
)
def list_repository_merges(
    repository: str,
    limit: int = Query(default=20, ge=1, le=200),
) -> MergeHistoryResponse:
    repo = repository_service.get_repository(repository)
    items = merge_history_service.list_merges(repo.name, limit=limit)
    return MergeHistoryResponse(
        repository=repo.name,
        items=[
            MergeHistoryItem(
                id=item.id,
                source_branch=item.source_branch,
                target_branch=item.target_branch,
                squash=item.squash,
                outcome=item.outcome,
                before_sha=item.before_sha,
                after_sha=item.after_sha,
                conflicted_files=item.conflicted_files,
                summary=item.summary,
                merged_at=item.merged_at,
            )
            for item in items
        ],
    )


@router.post(
    '/repositories/{repository}/merge-dialogs',
    response_model=MergeDialogResponse,
    status_code=201,
)
async def open_merge_dialog(
    repository: str,
    body: OpenMergeDialogRequest,
) -> MergeDialogResponse:
    opened = await merge_dialog_service.open_dialog(repository, body.operation)
    return _to_dialog_response(opened.dialog_id, opened.dialog)


@router.get(
    '/merge-dialogs/{dialog_id}',
    response_model=MergeDialogResponse,
)
def get_merge_dialog(dialog_id: str) -> MergeDialogResponse:
    dialog = merge_dialog_service.get_dialog(dialog_id)
    return _to_dialog_response(dialog_id, dialog)


@router.put(
    '/merge-dialogs/{dialog_id}/selection',
    response_model=MergeDialogResponse,
)
async def select_merge_dialog_branch(
    dialog_id: str,
    body: SelectBranchRequest,
) -> MergeDialogResponse:
    dialog = await merge_dialog_service.select_branch(dialog_id, body.branch)
    return _to_dialog_response(dialog_id, dialog)


@router.post(
    '/merge-dialogs/{dialog_id}/start',
    response_model=MergeOutcomeResponse,
)
async def start_merge(dialog_id: str) -> MergeOutcomeResponse:
    repository = merge_dialog_service.get_dialog(dialog_id).repository
    outcome = await merge_dialog_service.start(dialog_id)
    return MergeOutcomeResponse(
        dialog_id=dialog_id,
        repository=repository.name,
        outcome=outcome.kind,
        source_branch=outcome.source_branch,
        target_branch=outcome.target_branch,
        before_sha=outcome.before_sha,
        after_sha=outcome.after_sha,
        conflicted_files=outcome.conflicted_files,
        summary=outcome.summary,
    )


@router.delete('/merge-dialogs/{dialog_id}', status_code=204)
def close_merge_dialog(dialog_id: str) -> Response:
    merge_dialog_service.get_dialog(dialog_id)
    merge_dialog_service.close_dialog(dialog_id)
    return Response(status_code=204)


def _to_dialog_response(dialog_id: str, dialog: MergeChooseBranchDialog) -> MergeDialogResponse:
    snapshot = dialog.snapshot()
    return MergeDialogResponse(
        dialog_id=dialog_id,
        repository=dialog.repository.name,
        title=snapshot.title,
        operation=snapshot.operation,
        current_branch=snapshot.current_branch,
        selected_branch=snapshot.selected_branch,
        status=snapshot.status,
        conflicted_files=snapshot.conflicted_files,
        commit_count=snapshot.commit_count,
        message=snapshot.message,
        icon=ActionStatusIconItem(
            symbol=snapshot.icon.symbol,
            class_name=snapshot.icon.class_name,
            spin=snapshot.icon.spin,
        )
        if snapshot.icon
        else None,
        can_start=snapshot.can_start,
    )
