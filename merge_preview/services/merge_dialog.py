from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any

from merge_preview.core.config import settings
from merge_preview.core.promise import run_with_floor
from merge_preview.models.branch import (
    Branch,
    ComputedAction,
    MergeOutcome,
    MergeTreeResult,
    MultiCommitOperationKind,
    PopupType,
    Repository,
)
from merge_preview.services.git_service import rev_symmetric_difference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionStatusIcon:
    symbol: str
    class_name: str
    spin: bool = False


@dataclass(frozen=True)
class MergeDialogSnapshot:
    title: str
    operation: MultiCommitOperationKind
    current_branch: str
    selected_branch: str | None
    status: ComputedAction | None
    conflicted_files: int
    commit_count: int
    message: str | None
    icon: ActionStatusIcon | None
    can_start: bool


def _pluralize(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def render_merge_status_message(
    status: MergeTreeResult | None,
    commit_count: int,
    target_name: str,
    current_name: str,
) -> str | None:
    if status is None:
        return None

    if status.kind is ComputedAction.LOADING:
        return 'Checking for ability to merge automatically...'

    if status.kind is ComputedAction.CLEAN:
        if commit_count == 0:
            return f'This branch is up to date with **{target_name}**'
        pluralized = _pluralize(commit_count, 'commit', 'commits')
        return (
            f'This will merge **{commit_count} {pluralized}** '
            f'from **{target_name}** into **{current_name}**'
        )

    if status.kind is ComputedAction.INVALID:
        return 'Unable to merge unrelated histories in this repository'

    if status.kind is ComputedAction.CONFLICTS:
        count = status.conflicted_files
        pluralized = _pluralize(count, 'file', 'files')
        return (
            f'There will be **{count} conflicted {pluralized}** '
            f'when merging **{target_name}** into **{current_name}**'
        )

    raise ValueError(f'unknown merge status: {status.kind!r}')


_STATUS_ICONS: dict[ComputedAction, tuple[str, bool]] = {
    ComputedAction.LOADING: ('sync', True),
    ComputedAction.CLEAN: ('check', False),
    ComputedAction.CONFLICTS: ('alert', False),
    ComputedAction.INVALID: ('x', False),
}


def render_action_status_icon(
    status: MergeTreeResult | None,
    class_name_prefix: str = 'merge-status',
) -> ActionStatusIcon | None:
    if status is None:
        return None
    symbol, spin = _STATUS_ICONS[status.kind]
    return ActionStatusIcon(
        symbol=symbol,
        class_name=f'{class_name_prefix} {class_name_prefix}-{status.kind.value}',
        spin=spin,
    )


class MergeChooseBranchDialog:
    """选择要合并进当前分支的分支，并预览合并结果。

    每次选择都会递增 selection token；异步检查在每个 await 之后
    都要确认自己持有的 token 仍是最新的，否则丢弃结果。

    dispatcher 需要提供：
    - `async merge_branch(repository, branch, merge_status, is_squash)`
    - `close_popup(kind)`

    git_service 需要提供 `determine_mergeability` 与 `get_ahead_behind`。
    """

    def __init__(
        self,
        repository: Repository,
        current_branch: Branch,
        operation: MultiCommitOperationKind,
        dispatcher: Any,
        git_service: Any,
        min_latency_ms: int | None = None,
    ) -> None:
        self.repository = repository
        self.current_branch = current_branch
        self.operation = operation
        self.selected_branch: Branch | None = None
        self.merge_status: MergeTreeResult | None = None
        self.commit_count = 0
        self.status_preview: str | None = None
        self._dispatcher = dispatcher
        self._git_service = git_service
        self._min_latency_ms = (
            settings.merge_status_min_latency_ms if min_latency_ms is None else min_latency_ms
        )
        self._selection_token = 0
        self.started = False
        self._pending: set[asyncio.Task] = set()

    def select_branch(self, branch: Branch | None) -> asyncio.Task | None:
        self._selection_token += 1
        self.selected_branch = branch
        self.commit_count = 0

        if branch is None:
            # 回到空状态
            self.merge_status = None
            self.status_preview = None
            return None

        self._update_merge_status_preview(branch, MergeTreeResult.loading())
        task = asyncio.get_running_loop().create_task(
            self._update_status(branch, self._selection_token)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def can_start(self) -> bool:
        if self.started:
            return False

        selected_branch = self.selected_branch
        if selected_branch is None:
            return False
        if selected_branch.name == self.current_branch.name:
            return False

        status = self.merge_status
        if status is not None and status.kind is ComputedAction.INVALID:
            return False

        # 冲突状态不查提交数，commit_count 恒为 0；此时不再要求提交数大于 0，
        # 有冲突说明目标分支必然带有当前分支没有的提交。
        is_conflicted = status is not None and status.kind is ComputedAction.CONFLICTS
        return self.commit_count > 0 or is_conflicted

    async def start(self) -> MergeOutcome | None:
        if not self.can_start():
            return None

        selected_branch = self.selected_branch
        if selected_branch is None:
            return None

        # 在第一个 await 之前占位，重复的 start 直接被 can_start 拒绝。
        self.started = True
        try:
            outcome = await self._dispatcher.merge_branch(
                self.repository,
                selected_branch,
                self.merge_status,
                self.operation is MultiCommitOperationKind.SQUASH,
            )
        except BaseException:
            self.started = False
            raise
        self._dispatcher.close_popup(PopupType.MULTI_COMMIT_OPERATION)
        return outcome

    def get_dialog_title(self, branch_name: str) -> str:
        squash_prefix = 'Squash and ' if self.operation is MultiCommitOperationKind.SQUASH else ''
        return f'{squash_prefix}Merge into **{branch_name}**'

    def render_action_status_icon(self) -> ActionStatusIcon | None:
        return render_action_status_icon(self.merge_status)

    def snapshot(self) -> MergeDialogSnapshot:
        status = self.merge_status
        return MergeDialogSnapshot(
            title=self.get_dialog_title(self.current_branch.name),
            operation=self.operation,
            current_branch=self.current_branch.name,
            selected_branch=self.selected_branch.name if self.selected_branch else None,
            status=status.kind if status else None,
            conflicted_files=status.conflicted_files if status else 0,
            commit_count=self.commit_count,
            message=self.status_preview,
            icon=self.render_action_status_icon(),
            can_start=self.can_start(),
        )

    def close(self) -> None:
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    def _is_current(self, token: int) -> bool:
        return token == self._selection_token

    async def _update_status(self, branch: Branch, token: int) -> None:
        try:
            merge_status = await run_with_floor(
                lambda: self._git_service.determine_mergeability(
                    self.repository,
                    self.current_branch,
                    branch,
                ),
                self._min_latency_ms,
            )
        except Exception:
            logger.exception(
                'Failed determining mergeability repository=%s current=%s branch=%s',
                self.repository.name,
                self.current_branch.name,
                branch.name,
            )
            merge_status = MergeTreeResult.clean()

        # 用户已经选择了其他分支，丢弃过期结果。
        if not self._is_current(token):
            return

        # 只有 clean 需要提交数；冲突与无效状态直接展示。
        if merge_status.kind in (ComputedAction.CONFLICTS, ComputedAction.INVALID):
            self._update_merge_status_preview(branch, merge_status)
            return

        revision_range = rev_symmetric_difference('', branch.name)
        ahead_behind = await self._git_service.get_ahead_behind(self.repository, revision_range)

        if not self._is_current(token):
            return

        self.commit_count = ahead_behind.behind if ahead_behind else 0
        self._update_merge_status_preview(branch, merge_status)

    def _update_merge_status_preview(self, branch: Branch, merge_status: MergeTreeResult) -> None:
        self.merge_status = merge_status
        self.status_preview = render_merge_status_message(
            merge_status,
            self.commit_count,
            target_name=branch.name,
            current_name=self.current_branch.name,
        )
