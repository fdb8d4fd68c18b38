from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
import time
from uuid import uuid4

from merge_preview.core.config import settings
from merge_preview.core.errors import MergeDialogNotFoundError, MergeNotAllowedError
from merge_preview.models.branch import (
    Branch,
    ComputedAction,
    MergeOutcome,
    MergeTreeResult,
    MultiCommitOperationKind,
    PopupType,
    Repository,
)
from merge_preview.services.git_service import GitService, git_service
from merge_preview.services.merge_dialog import MergeChooseBranchDialog
from merge_preview.services.merge_history_service import (
    MergeHistoryService,
    merge_history_service,
)
from merge_preview.services.repository_service import (
    RepositoryService,
    repository_service,
)

logger = logging.getLogger(__name__)


class MergeDialogDispatcher:
    """单个对话框的动作出口：执行合并、记录历史、关闭对话框。"""

    def __init__(
        self,
        dialog_id: str,
        dialog_service: MergeDialogService,
        git_service: GitService,
        history_service: MergeHistoryService | None = None,
    ) -> None:
        self._dialog_id = dialog_id
        self._dialog_service = dialog_service
        self._git_service = git_service
        self._history_service = history_service

    async def merge_branch(
        self,
        repository: Repository,
        branch: Branch,
        merge_status: MergeTreeResult | None,
        is_squash: bool,
    ) -> MergeOutcome:
        outcome = await self._git_service.merge_branch(repository, branch, squash=is_squash)
        logger.info(
            'merge finished repository=%s source=%s target=%s squash=%s predicted=%s outcome=%s',
            repository.name,
            outcome.source_branch,
            outcome.target_branch,
            is_squash,
            merge_status.kind.value if merge_status else None,
            outcome.kind.value,
        )
        if self._history_service is not None:
            self._history_service.record_merge(repository.name, outcome, squash=is_squash)
        return outcome

    def close_popup(self, kind: PopupType) -> None:
        if kind is PopupType.MULTI_COMMIT_OPERATION:
            self._dialog_service.close_dialog(self._dialog_id)


@dataclass(frozen=True)
class OpenedMergeDialog:
    dialog_id: str
    dialog: MergeChooseBranchDialog


class MergeDialogService:
    """进程内的合并对话框登记表。对话框状态不落盘，关闭即销毁。"""

    def __init__(
        self,
        repository_service: RepositoryService,
        git_service: GitService,
        history_service: MergeHistoryService | None = None,
        min_latency_ms: int | None = None,
        idle_ttl_seconds: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._repository_service = repository_service
        self._git_service = git_service
        self._history_service = history_service
        self._min_latency_ms = min_latency_ms
        self._idle_ttl_seconds = idle_ttl_seconds
        self._clock = clock
        self._dialogs: dict[str, MergeChooseBranchDialog] = {}
        self._last_active: dict[str, float] = {}
        self._selection_requests: dict[str, int] = {}

    async def open_dialog(
        self,
        repository_name: str,
        operation: MultiCommitOperationKind,
    ) -> OpenedMergeDialog:
        self._expire_idle_dialogs()
        repository = self._repository_service.get_repository(repository_name)
        current_branch = await self._git_service.current_branch(repository)

        dialog_id = str(uuid4())
        dispatcher = MergeDialogDispatcher(
            dialog_id=dialog_id,
            dialog_service=self,
            git_service=self._git_service,
            history_service=self._history_service,
        )
        dialog = MergeChooseBranchDialog(
            repository=repository,
            current_branch=current_branch,
            operation=operation,
            dispatcher=dispatcher,
            git_service=self._git_service,
            min_latency_ms=self._min_latency_ms,
        )
        self._dialogs[dialog_id] = dialog
        self._last_active[dialog_id] = self._clock()
        self._selection_requests[dialog_id] = 0
        logger.info(
            'merge dialog opened id=%s repository=%s current=%s operation=%s open=%s',
            dialog_id,
            repository.name,
            current_branch.name,
            operation.value,
            len(self._dialogs),
        )
        return OpenedMergeDialog(dialog_id=dialog_id, dialog=dialog)

    def get_dialog(self, dialog_id: str) -> MergeChooseBranchDialog:
        dialog = self._dialogs.get(dialog_id)
        if dialog is None:
            raise MergeDialogNotFoundError(dialog_id)
        if self._is_idle(dialog_id, dialog):
            self.close_dialog(dialog_id)
            raise MergeDialogNotFoundError(dialog_id)
        self._last_active[dialog_id] = self._clock()
        return dialog

    async def select_branch(
        self,
        dialog_id: str,
        branch_name: str | None,
    ) -> MergeChooseBranchDialog:
        dialog = self.get_dialog(dialog_id)
        request = self._selection_requests.get(dialog_id, 0) + 1
        self._selection_requests[dialog_id] = request

        branch: Branch | None = None
        if branch_name is not None:
            branch = await self._git_service.get_branch(dialog.repository, branch_name)
            # 分支查询期间对话框可能已被关闭。
            dialog = self.get_dialog(dialog_id)
            # 查询期间又来了新的选择请求，本次结果已过期。
            if self._selection_requests.get(dialog_id) != request:
                return dialog
        dialog.select_branch(branch)
        return dialog

    async def start(self, dialog_id: str) -> MergeOutcome:
        dialog = self.get_dialog(dialog_id)
        if not dialog.can_start():
            raise MergeNotAllowedError(dialog_id, self._describe_blocker(dialog))

        outcome = await dialog.start()
        if outcome is None:
            raise MergeNotAllowedError(dialog_id, 'selection changed before merge started')
        return outcome

    def close_dialog(self, dialog_id: str) -> None:
        dialog = self._dialogs.pop(dialog_id, None)
        self._last_active.pop(dialog_id, None)
        self._selection_requests.pop(dialog_id, None)
        if dialog is None:
            return
        dialog.close()
        logger.info('merge dialog closed id=%s open=%s', dialog_id, len(self._dialogs))

    def open_dialog_count(self) -> int:
        return len(self._dialogs)

    def _is_idle(self, dialog_id: str, dialog: MergeChooseBranchDialog) -> bool:
        if self._idle_ttl_seconds <= 0 or dialog.started:
            return False
        last_active = self._last_active.get(dialog_id, self._clock())
        return self._clock() - last_active > self._idle_ttl_seconds

    def _expire_idle_dialogs(self) -> None:
        expired = [
            dialog_id
            for dialog_id, dialog in self._dialogs.items()
            if self._is_idle(dialog_id, dialog)
        ]
        for dialog_id in expired:
            self.close_dialog(dialog_id)
        if expired:
            logger.info('expired idle merge dialogs count=%s open=%s', len(expired), len(self._dialogs))

    def _describe_blocker(self, dialog: MergeChooseBranchDialog) -> str:
        if dialog.started:
            return 'merge already started'
        if dialog.selected_branch is None:
            return 'no branch selected'
        if dialog.selected_branch.name == dialog.current_branch.name:
            return 'selected branch is the current branch'
        status = dialog.merge_status
        if status is not None and status.kind is ComputedAction.INVALID:
            return 'branches have unrelated histories'
        if status is not None and status.kind is ComputedAction.LOADING:
            return 'mergeability check still running'
        return 'no commits to merge'


merge_dialog_service = MergeDialogService(
    repository_service=repository_service,
    git_service=git_service,
    history_service=merge_history_service,
    min_latency_ms=settings.merge_status_min_latency_ms,
    idle_ttl_seconds=settings.merge_dialog_idle_ttl_seconds,
)
