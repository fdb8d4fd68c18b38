import os
from pathlib import Path
import shutil
import subprocess
import tempfile

import pytest

# settings 在导入时创建数据目录，测试统一放到临时目录。
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="merge-preview-test-"))
os.environ.setdefault("MERGE_STATUS_MIN_LATENCY_MS", "0")


def _git_supports_write_tree() -> bool:
    if shutil.which("git") is None:
        return False
    completed = subprocess.run(
        ["git", "--version"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
    # 形如 "git version 2.43.0"
    parts = completed.stdout.split()
    if len(parts) < 3:
        return False
    numbers = parts[2].split(".")
    try:
        version = (int(numbers[0]), int(numbers[1]))
    except (IndexError, ValueError):
        return False
    return version >= (2, 38)


class RepoBuilder:
    def __init__(self, path: Path) -> None:
        self.path = path

    def git(self, *args: str) -> str:
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["GIT_EDITOR"] = "true"
        completed = subprocess.run(
            ["git", *args],
            cwd=str(self.path),
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        return completed.stdout.strip()

    def commit_file(self, name: str, content: str, message: str) -> str:
        target = self.path / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        self.git("add", name)
        self.git("commit", "-m", message)
        return self.git("rev-parse", "HEAD")

    def checkout(self, branch: str, create: bool = False) -> None:
        if create:
            self.git("checkout", "-b", branch)
        else:
            self.git("checkout", branch)


@pytest.fixture
def repo_root(tmp_path: Path) -> Path:
    root = (tmp_path / "repositories").resolve()
    root.mkdir()
    return root


@pytest.fixture
def make_repo(repo_root: Path):
    if not _git_supports_write_tree():
        pytest.skip("git >= 2.38 is required for merge-tree --write-tree")

    def _make(name: str = "demo") -> RepoBuilder:
        path = repo_root / name
        path.mkdir()
        builder = RepoBuilder(path)
        builder.git("init", "-b", "main")
        builder.git("config", "user.email", "dev@example.com")
        builder.git("config", "user.name", "Dev")
        builder.git("config", "commit.gpgsign", "false")
        builder.commit_file("README.md", "hello\n", "initial commit")
        return builder

    return _make


@pytest.fixture
def scenario_repo(make_repo) -> RepoBuilder:
    """main 之外准备几类典型分支：

    - feature：基于 main 新增 3 个提交，可干净合并
    - conflict：与 main 修改同一行 README
    - old：停留在 main 的旧提交，已被完全包含
    - orphan：无共同祖先
    """
    repo = make_repo()

    repo.checkout("old", create=True)
    repo.checkout("main")

    repo.checkout("feature", create=True)
    for index in range(3):
        repo.commit_file(f"feature_{index}.txt", f"feature {index}\n", f"feature {index}")
    repo.checkout("main")

    repo.checkout("conflict", create=True)
    repo.commit_file("README.md", "hello from conflict\n", "conflict edit")
    repo.checkout("main")
    repo.commit_file("README.md", "hello from main\n", "main edit")

    repo.git("checkout", "--orphan", "orphan")
    repo.git("rm", "-rf", "--quiet", ".")
    repo.commit_file("orphan.txt", "orphan\n", "orphan root")
    repo.checkout("main")

    return repo
