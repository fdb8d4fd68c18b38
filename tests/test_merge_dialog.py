import asyncio
import logging
from pathlib import Path

import pytest

from merge_preview.models.branch import (
    AheadBehind,
    Branch,
    ComputedAction,
    MergeOutcome,
    MergeOutcomeKind,
    MergeTreeResult,
    MultiCommitOperationKind,
    PopupType,
    Repository,
)
from merge_preview.services.merge_dialog import (
    MergeChooseBranchDialog,
    render_action_status_icon,
    render_merge_status_message,
)

MAIN = Branch(name="main", tip="a" * 40)
FEATURE = Branch(name="feature", tip="b" * 40)
OTHER = Branch(name="other", tip="c" * 40)


class FakeGitService:
    def __init__(self) -> None:
        self.mergeability: dict[str, MergeTreeResult | Exception] = {}
        self.ahead_behind: dict[str, AheadBehind | None] = {}
        self.mergeability_gates: dict[str, asyncio.Event] = {}
        self.ahead_behind_gates: dict[str, asyncio.Event] = {}
        self.ahead_behind_started: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, str]] = []

    async def determine_mergeability(self, repository, current_branch, candidate_branch):
        self.calls.append(("mergeability", candidate_branch.name))
        gate = self.mergeability_gates.get(candidate_branch.name)
        if gate is not None:
            await gate.wait()
        result = self.mergeability.get(candidate_branch.name, MergeTreeResult.clean())
        if isinstance(result, Exception):
            raise result
        return result

    async def get_ahead_behind(self, repository, revision_range):
        branch_name = revision_range.split("...", 1)[1]
        self.calls.append(("ahead_behind", revision_range))
        started = self.ahead_behind_started.get(branch_name)
        if started is not None:
            started.set()
        gate = self.ahead_behind_gates.get(branch_name)
        if gate is not None:
            await gate.wait()
        return self.ahead_behind.get(branch_name)


class FakeDispatcher:
    def __init__(self) -> None:
        self.merges: list[tuple[Repository, Branch, MergeTreeResult | None, bool]] = []
        self.closed: list[PopupType] = []

    async def merge_branch(self, repository, branch, merge_status, is_squash):
        self.merges.append((repository, branch, merge_status, is_squash))
        return MergeOutcome(
            kind=MergeOutcomeKind.SQUASHED if is_squash else MergeOutcomeKind.MERGED,
            source_branch=branch.name,
            target_branch=MAIN.name,
            before_sha=MAIN.tip,
            after_sha="d" * 40,
            summary=f"Merged {branch.name} into {MAIN.name}",
        )

    def close_popup(self, kind):
        self.closed.append(kind)


class SlowDispatcher(FakeDispatcher):
    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def merge_branch(self, repository, branch, merge_status, is_squash):
        self.entered.set()
        await self.release.wait()
        return await super().merge_branch(repository, branch, merge_status, is_squash)


class FailingDispatcher(FakeDispatcher):
    async def merge_branch(self, repository, branch, merge_status, is_squash):
        raise RuntimeError("merge exploded")


def _build_dialog(
    git: FakeGitService,
    dispatcher: FakeDispatcher | None = None,
    operation: MultiCommitOperationKind = MultiCommitOperationKind.MERGE,
    min_latency_ms: int = 0,
) -> MergeChooseBranchDialog:
    return MergeChooseBranchDialog(
        repository=Repository(name="demo", path=Path("/tmp/demo")),
        current_branch=MAIN,
        operation=operation,
        dispatcher=dispatcher or FakeDispatcher(),
        git_service=git,
        min_latency_ms=min_latency_ms,
    )


@pytest.mark.asyncio
async def test_clean_merge_reports_commit_count_and_can_start() -> None:
    git = FakeGitService()
    git.ahead_behind["feature"] = AheadBehind(ahead=1, behind=3)
    dialog = _build_dialog(git)

    await dialog.select_branch(FEATURE)

    assert dialog.merge_status == MergeTreeResult.clean()
    assert dialog.commit_count == 3
    assert dialog.status_preview == "This will merge **3 commits** from **feature** into **main**"
    assert dialog.can_start() is True
    assert ("ahead_behind", "...feature") in git.calls


@pytest.mark.asyncio
async def test_selection_shows_loading_before_check_resolves() -> None:
    git = FakeGitService()
    git.mergeability_gates["feature"] = asyncio.Event()
    dialog = _build_dialog(git)

    task = dialog.select_branch(FEATURE)

    assert dialog.merge_status == MergeTreeResult.loading()
    assert dialog.status_preview == "Checking for ability to merge automatically..."
    assert dialog.can_start() is False
    icon = dialog.render_action_status_icon()
    assert icon is not None and icon.symbol == "sync" and icon.spin is True

    git.mergeability_gates["feature"].set()
    await task


@pytest.mark.asyncio
async def test_selecting_current_branch_never_allows_start() -> None:
    git = FakeGitService()
    git.ahead_behind["main"] = AheadBehind(ahead=0, behind=5)
    dialog = _build_dialog(git)

    await dialog.select_branch(Branch(name="main"))

    assert dialog.commit_count == 5
    assert dialog.can_start() is False


@pytest.mark.asyncio
async def test_clean_merge_without_commits_is_up_to_date() -> None:
    git = FakeGitService()
    git.ahead_behind["feature"] = AheadBehind(ahead=2, behind=0)
    dialog = _build_dialog(git)

    await dialog.select_branch(FEATURE)

    assert dialog.status_preview == "This branch is up to date with **feature**"
    assert dialog.can_start() is False


@pytest.mark.asyncio
async def test_missing_ahead_behind_counts_as_zero() -> None:
    git = FakeGitService()
    git.ahead_behind["feature"] = None
    dialog = _build_dialog(git)

    await dialog.select_branch(FEATURE)

    assert dialog.commit_count == 0
    assert dialog.status_preview == "This branch is up to date with **feature**"


@pytest.mark.asyncio
async def test_single_commit_uses_singular_wording() -> None:
    git = FakeGitService()
    git.ahead_behind["feature"] = AheadBehind(ahead=0, behind=1)
    dialog = _build_dialog(git)

    await dialog.select_branch(FEATURE)

    assert dialog.status_preview == "This will merge **1 commit** from **feature** into **main**"


@pytest.mark.asyncio
async def test_conflicted_merge_skips_commit_lookup_and_can_start() -> None:
    git = FakeGitService()
    git.mergeability["feature"] = MergeTreeResult.conflicts(2)
    dialog = _build_dialog(git)

    await dialog.select_branch(FEATURE)

    assert dialog.merge_status == MergeTreeResult.conflicts(2)
    assert dialog.status_preview == (
        "There will be **2 conflicted files** when merging **feature** into **main**"
    )
    assert not any(call[0] == "ahead_behind" for call in git.calls)
    # 冲突时提交数恒为 0，仍然允许开始合并。
    assert dialog.commit_count == 0
    assert dialog.can_start() is True


@pytest.mark.asyncio
async def test_invalid_merge_blocks_start() -> None:
    git = FakeGitService()
    git.mergeability["feature"] = MergeTreeResult.invalid()
    git.ahead_behind["feature"] = AheadBehind(ahead=0, behind=4)
    dialog = _build_dialog(git)

    await dialog.select_branch(FEATURE)

    assert dialog.status_preview == "Unable to merge unrelated histories in this repository"
    assert not any(call[0] == "ahead_behind" for call in git.calls)
    assert dialog.can_start() is False


@pytest.mark.asyncio
async def test_mergeability_failure_falls_back_to_clean(caplog) -> None:
    git = FakeGitService()
    git.mergeability["feature"] = RuntimeError("merge-tree exploded")
    git.ahead_behind["feature"] = AheadBehind(ahead=0, behind=2)
    dialog = _build_dialog(git)

    with caplog.at_level(logging.ERROR, logger="merge_preview.services.merge_dialog"):
        await dialog.select_branch(FEATURE)

    assert dialog.merge_status == MergeTreeResult.clean()
    assert dialog.commit_count == 2
    assert "Failed determining mergeability" in caplog.text


@pytest.mark.asyncio
async def test_stale_mergeability_result_is_discarded() -> None:
    git = FakeGitService()
    git.mergeability_gates["feature"] = asyncio.Event()
    git.ahead_behind["feature"] = AheadBehind(ahead=0, behind=9)
    git.mergeability["other"] = MergeTreeResult.conflicts(1)
    dialog = _build_dialog(git)

    first = dialog.select_branch(FEATURE)
    second = dialog.select_branch(OTHER)
    await second

    git.mergeability_gates["feature"].set()
    await first

    assert dialog.selected_branch == OTHER
    assert dialog.merge_status == MergeTreeResult.conflicts(1)
    assert dialog.commit_count == 0
    assert dialog.status_preview == (
        "There will be **1 conflicted file** when merging **other** into **main**"
    )
    assert ("ahead_behind", "...feature") not in git.calls


@pytest.mark.asyncio
async def test_stale_ahead_behind_result_is_discarded() -> None:
    git = FakeGitService()
    git.ahead_behind["feature"] = AheadBehind(ahead=0, behind=7)
    git.ahead_behind_gates["feature"] = asyncio.Event()
    git.ahead_behind_started["feature"] = asyncio.Event()
    git.mergeability["other"] = MergeTreeResult.invalid()
    dialog = _build_dialog(git)

    first = dialog.select_branch(FEATURE)
    await git.ahead_behind_started["feature"].wait()

    second = dialog.select_branch(OTHER)
    await second

    git.ahead_behind_gates["feature"].set()
    await first

    assert dialog.selected_branch == OTHER
    assert dialog.merge_status == MergeTreeResult.invalid()
    assert dialog.commit_count == 0
    assert dialog.can_start() is False


@pytest.mark.asyncio
async def test_clearing_selection_resets_state() -> None:
    git = FakeGitService()
    git.ahead_behind["feature"] = AheadBehind(ahead=0, behind=3)
    dialog = _build_dialog(git)
    await dialog.select_branch(FEATURE)

    result = dialog.select_branch(None)

    assert result is None
    assert dialog.selected_branch is None
    assert dialog.merge_status is None
    assert dialog.status_preview is None
    assert dialog.commit_count == 0
    assert dialog.can_start() is False
    assert dialog.render_action_status_icon() is None


@pytest.mark.asyncio
async def test_clearing_selection_discards_in_flight_check() -> None:
    git = FakeGitService()
    git.mergeability_gates["feature"] = asyncio.Event()
    dialog = _build_dialog(git)

    task = dialog.select_branch(FEATURE)
    dialog.select_branch(None)
    git.mergeability_gates["feature"].set()
    await task

    assert dialog.merge_status is None
    assert dialog.status_preview is None


@pytest.mark.asyncio
async def test_start_dispatches_merge_and_closes_popup() -> None:
    git = FakeGitService()
    git.ahead_behind["feature"] = AheadBehind(ahead=0, behind=3)
    dispatcher = FakeDispatcher()
    dialog = _build_dialog(git, dispatcher=dispatcher)
    await dialog.select_branch(FEATURE)

    outcome = await dialog.start()

    assert outcome is not None and outcome.kind is MergeOutcomeKind.MERGED
    assert len(dispatcher.merges) == 1
    repository, branch, status, is_squash = dispatcher.merges[0]
    assert repository.name == "demo"
    assert branch == FEATURE
    assert status == MergeTreeResult.clean()
    assert is_squash is False
    assert dispatcher.closed == [PopupType.MULTI_COMMIT_OPERATION]


@pytest.mark.asyncio
async def test_start_passes_squash_flag() -> None:
    git = FakeGitService()
    git.ahead_behind["feature"] = AheadBehind(ahead=0, behind=3)
    dispatcher = FakeDispatcher()
    dialog = _build_dialog(git, dispatcher=dispatcher, operation=MultiCommitOperationKind.SQUASH)
    await dialog.select_branch(FEATURE)

    await dialog.start()

    assert dispatcher.merges[0][3] is True


@pytest.mark.asyncio
async def test_start_is_noop_when_not_allowed() -> None:
    dispatcher = FakeDispatcher()
    dialog = _build_dialog(FakeGitService(), dispatcher=dispatcher)

    outcome = await dialog.start()

    assert outcome is None
    assert dispatcher.merges == []
    assert dispatcher.closed == []


@pytest.mark.asyncio
async def test_second_start_is_rejected_while_merge_runs() -> None:
    git = FakeGitService()
    git.ahead_behind["feature"] = AheadBehind(ahead=0, behind=3)
    dispatcher = SlowDispatcher()
    dialog = _build_dialog(git, dispatcher=dispatcher)
    await dialog.select_branch(FEATURE)

    first = asyncio.create_task(dialog.start())
    await dispatcher.entered.wait()

    assert dialog.started is True
    assert dialog.can_start() is False
    assert await dialog.start() is None

    dispatcher.release.set()
    outcome = await first
    assert outcome is not None
    assert len(dispatcher.merges) == 1


@pytest.mark.asyncio
async def test_failed_start_can_be_retried() -> None:
    git = FakeGitService()
    git.ahead_behind["feature"] = AheadBehind(ahead=0, behind=3)
    dispatcher = FailingDispatcher()
    dialog = _build_dialog(git, dispatcher=dispatcher)
    await dialog.select_branch(FEATURE)

    with pytest.raises(RuntimeError):
        await dialog.start()

    assert dialog.started is False
    assert dialog.can_start() is True
    assert dispatcher.closed == []


@pytest.mark.asyncio
async def test_close_cancels_pending_checks() -> None:
    git = FakeGitService()
    git.mergeability_gates["feature"] = asyncio.Event()
    dialog = _build_dialog(git)

    task = dialog.select_branch(FEATURE)
    await asyncio.sleep(0)
    dialog.close()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert task.cancelled()


@pytest.mark.asyncio
async def test_mergeability_check_respects_minimum_latency() -> None:
    git = FakeGitService()
    git.ahead_behind["feature"] = AheadBehind(ahead=0, behind=1)
    dialog = _build_dialog(git, min_latency_ms=50)
    loop = asyncio.get_running_loop()

    started = loop.time()
    await dialog.select_branch(FEATURE)

    assert loop.time() - started >= 0.045


def test_dialog_title_depends_on_operation() -> None:
    merge_dialog = _build_dialog(FakeGitService())
    squash_dialog = _build_dialog(FakeGitService(), operation=MultiCommitOperationKind.SQUASH)

    assert merge_dialog.get_dialog_title("main") == "Merge into **main**"
    assert squash_dialog.get_dialog_title("main") == "Squash and Merge into **main**"


def test_status_message_is_pure() -> None:
    status = MergeTreeResult.conflicts(3)

    first = render_merge_status_message(status, 0, "feature", "main")
    second = render_merge_status_message(status, 0, "feature", "main")

    assert first == second
    assert first == "There will be **3 conflicted files** when merging **feature** into **main**"
    assert render_merge_status_message(None, 4, "feature", "main") is None


def test_status_icons_cover_every_kind() -> None:
    symbols = {
        kind: render_action_status_icon(MergeTreeResult(kind=kind)).symbol
        for kind in ComputedAction
    }

    assert symbols == {
        ComputedAction.LOADING: "sync",
        ComputedAction.CLEAN: "check",
        ComputedAction.CONFLICTS: "alert",
        ComputedAction.INVALID: "x",
    }
    icon = render_action_status_icon(MergeTreeResult.invalid())
    assert icon.class_name == "merge-status merge-status-invalid"


@pytest.mark.asyncio
async def test_snapshot_reflects_committed_state() -> None:
    git = FakeGitService()
    git.ahead_behind["feature"] = AheadBehind(ahead=0, behind=2)
    dialog = _build_dialog(git)
    await dialog.select_branch(FEATURE)

    snapshot = dialog.snapshot()

    assert snapshot.title == "Merge into **main**"
    assert snapshot.selected_branch == "feature"
    assert snapshot.status is ComputedAction.CLEAN
    assert snapshot.commit_count == 2
    assert snapshot.message == "This will merge **2 commits** from **feature** into **main**"
    assert snapshot.icon.symbol == "check"
    assert snapshot.can_start is True
