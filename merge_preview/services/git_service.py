from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import os

from merge_preview.core.errors import (
    BranchNotFoundError,
    DetachedHeadError,
    GitCommandError,
)
from merge_preview.models.branch import (
    AheadBehind,
    Branch,
    MergeOutcome,
    MergeOutcomeKind,
    MergeTreeResult,
    Repository,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GitOutput:
    returncode: int
    stdout: str
    stderr: str


def rev_symmetric_difference(base: str, compare: str) -> str:
    """构造 `base...compare` 对称差范围，base 为空时 git 按 HEAD 处理。"""
    return f'{base}...{compare}'


class GitService:
    """基于 git 命令行的异步仓库操作。

    设计目标：
    1) 只读预演（merge-base / merge-tree / rev-list）不触碰工作区。
    2) 真正的合并只在 merge_branch 中发生，冲突时保留现场供用户处理。
    3) 所有命令统一经过 _exec_git，禁止交互式提示。
    """

    LOCAL_PREFIX = 'refs/heads/'
    REMOTE_PREFIX = 'refs/remotes/origin/'

    async def current_branch(self, repository: Repository) -> Branch:
        name = await self._run_git(repository, ['rev-parse', '--abbrev-ref', 'HEAD'])
        if not name or name == 'HEAD':
            raise DetachedHeadError(repository.name)
        tip = await self._run_git(repository, ['rev-parse', 'HEAD'])
        return Branch(name=name, tip=tip)

    async def list_branches(self, repository: Repository) -> list[Branch]:
        output = await self._run_git(
            repository,
            [
                'for-each-ref',
                '--format=%(refname)%09%(objectname)',
                'refs/heads',
                'refs/remotes/origin',
            ],
        )

        local: dict[str, Branch] = {}
        remote: dict[str, Branch] = {}
        for line in output.splitlines():
            refname, _, tip = line.strip().partition('\t')
            if refname.startswith(self.LOCAL_PREFIX):
                name = refname[len(self.LOCAL_PREFIX):]
                local[name] = Branch(name=name, tip=tip or None)
            elif refname.startswith(self.REMOTE_PREFIX):
                short_name = refname[len(self.REMOTE_PREFIX):]
                if not short_name or short_name == 'HEAD':
                    continue
                remote[short_name] = Branch(
                    name=f'origin/{short_name}',
                    tip=tip or None,
                    is_remote=True,
                )

        # 本地已有同名分支时不再重复展示远端分支。
        branches = list(local.values())
        branches.extend(
            branch for short_name, branch in remote.items() if short_name not in local
        )
        return sorted(branches, key=lambda item: item.name)

    async def get_branch(self, repository: Repository, name: str) -> Branch:
        normalized = name.strip()
        for branch in await self.list_branches(repository):
            if branch.name == normalized:
                return branch
        raise BranchNotFoundError(repository.name, normalized)

    async def merge_base(self, repository: Repository, first: str, second: str) -> str | None:
        args = ['merge-base', first, second]
        output = await self._exec_git(repository, args)
        if output.returncode == 0:
            return output.stdout.strip() or None
        # 退出码 1 且无输出表示两者没有共同祖先。
        if output.returncode == 1 and not output.stderr.strip():
            return None
        raise self._command_error(repository, args, output)

    async def determine_mergeability(
        self,
        repository: Repository,
        current_branch: Branch,
        candidate_branch: Branch,
    ) -> MergeTreeResult:
        base = await self.merge_base(repository, current_branch.name, candidate_branch.name)
        if base is None:
            return MergeTreeResult.invalid()

        candidate_tip = await self._run_git(
            repository,
            ['rev-parse', '--verify', f'{candidate_branch.name}^{{commit}}'],
        )
        if base == candidate_tip:
            return MergeTreeResult.clean()

        args = [
            'merge-tree',
            '--write-tree',
            '--name-only',
            '--no-messages',
            '-z',
            current_branch.name,
            candidate_branch.name,
        ]
        output = await self._exec_git(repository, args)
        if output.returncode == 0:
            return MergeTreeResult.clean()
        if output.returncode == 1:
            # 输出格式：<tree oid>\0<path>\0<path>\0...
            entries = output.stdout.split('\0')
            paths = {entry for entry in entries[1:] if entry.strip()}
            return MergeTreeResult.conflicts(len(paths))
        raise self._command_error(repository, args, output)

    async def get_ahead_behind(
        self,
        repository: Repository,
        revision_range: str,
    ) -> AheadBehind | None:
        try:
            output = await self._run_git(
                repository,
                ['rev-list', '--left-right', '--count', revision_range, '--'],
            )
        except GitCommandError:
            logger.warning(
                'ahead/behind lookup failed repository=%s range=%s',
                repository.name,
                revision_range,
            )
            return None

        parts = output.split()
        if len(parts) != 2:
            return None
        try:
            return AheadBehind(ahead=int(parts[0]), behind=int(parts[1]))
        except ValueError:
            return None

    async def merge_branch(
        self,
        repository: Repository,
        branch: Branch,
        squash: bool,
    ) -> MergeOutcome:
        target = await self.current_branch(repository)
        before_sha = target.tip

        args = ['merge', '--squash', branch.name] if squash else ['merge', '--no-edit', branch.name]
        output = await self._exec_git(repository, args)
        if output.returncode != 0:
            conflicted = await self._unmerged_paths(repository)
            if not conflicted:
                raise self._command_error(repository, args, output)
            pluralized = 'file' if len(conflicted) == 1 else 'files'
            return MergeOutcome(
                kind=MergeOutcomeKind.CONFLICTS,
                source_branch=branch.name,
                target_branch=target.name,
                before_sha=before_sha,
                after_sha=before_sha,
                summary=(
                    f'Merging {branch.name} into {target.name} stopped with '
                    f'{len(conflicted)} conflicted {pluralized}'
                ),
                conflicted_files=conflicted,
            )

        if squash:
            staged = await self._exec_git(repository, ['diff', '--cached', '--quiet'])
            if staged.returncode == 0:
                return self._up_to_date(branch, target)
            await self._run_git(repository, ['commit', '--no-edit'])
            kind = MergeOutcomeKind.SQUASHED
            verb = 'Squashed and merged'
        else:
            kind = MergeOutcomeKind.MERGED
            verb = 'Merged'

        after_sha = await self._run_git(repository, ['rev-parse', 'HEAD'])
        if after_sha == before_sha:
            return self._up_to_date(branch, target)

        return MergeOutcome(
            kind=kind,
            source_branch=branch.name,
            target_branch=target.name,
            before_sha=before_sha,
            after_sha=after_sha,
            summary=f'{verb} {branch.name} into {target.name}',
        )

    def _up_to_date(self, branch: Branch, target: Branch) -> MergeOutcome:
        return MergeOutcome(
            kind=MergeOutcomeKind.UP_TO_DATE,
            source_branch=branch.name,
            target_branch=target.name,
            before_sha=target.tip,
            after_sha=target.tip,
            summary=f'{target.name} is already up to date with {branch.name}',
        )

    async def _unmerged_paths(self, repository: Repository) -> list[str]:
        output = await self._run_git(
            repository,
            ['diff', '--name-only', '--diff-filter=U'],
        )
        return [line.strip() for line in output.splitlines() if line.strip()]

    async def _run_git(self, repository: Repository, args: list[str]) -> str:
        output = await self._exec_git(repository, args)
        if output.returncode != 0:
            raise self._command_error(repository, args, output)
        return output.stdout.strip()

    async def _exec_git(self, repository: Repository, args: list[str]) -> GitOutput:
        command = ['git', '-c', 'credential.helper=']
        command.extend(args)

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(repository.path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._git_process_env(),
            )
        except FileNotFoundError as exc:
            raise GitCommandError(repository.name, args, 'git command not found') from exc

        stdout, stderr = await process.communicate()
        return GitOutput(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode('utf-8', errors='replace'),
            stderr=stderr.decode('utf-8', errors='replace'),
        )

    def _command_error(
        self,
        repository: Repository,
        args: list[str],
        output: GitOutput,
    ) -> GitCommandError:
        reason = (output.stderr or output.stdout or 'git command failed').strip()
        return GitCommandError(repository.name, args, reason, returncode=output.returncode)

    def _git_process_env(self) -> dict[str, str]:
        env = os.environ.copy()
        env['GIT_TERMINAL_PROMPT'] = '0'
        env['GCM_INTERACTIVE'] = 'Never'
        # 合并与 squash 提交都使用 git 生成的默认提交信息，不打开编辑器。
        env['GIT_EDITOR'] = 'true'
        env['GIT_MERGE_AUTOEDIT'] = 'no'
        return env


git_service = GitService()
