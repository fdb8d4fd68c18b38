from pathlib import Path

from merge_preview.core.config import settings
from merge_preview.core.errors import InvalidRepositoryError, RepositoryNotFoundError
from merge_preview.models.branch import Repository


class RepositoryService:
    """根目录下的 git 仓库登记，每个一级子目录即一个仓库。"""

    def __init__(self, root_dir: Path) -> None:
        self._root_dir = root_dir

    def list_repositories(self) -> list[Repository]:
        items: list[Repository] = []
        for item in self._root_dir.iterdir():
            if not item.is_dir():
                continue
            if not (item / ".git").exists():
                continue
            items.append(Repository(name=item.name, path=item.resolve()))
        return sorted(items, key=lambda x: x.name)

    def get_repository(self, repository: str) -> Repository:
        self._validate_repository_name(repository)

        target = (self._root_dir / repository).resolve()

        if self._root_dir.resolve() not in target.parents:
            raise InvalidRepositoryError(repository)

        if not target.exists() or not target.is_dir():
            raise RepositoryNotFoundError(repository)

        # 普通目录不算仓库，避免在非 git 目录上执行合并预演。
        if not (target / ".git").exists():
            raise RepositoryNotFoundError(repository)

        return Repository(name=repository, path=target)

    def _validate_repository_name(self, repository: str) -> None:
        if not repository or "/" in repository or "\\" in repository or ".." in repository:
            raise InvalidRepositoryError(repository)


repository_service = RepositoryService(settings.repository_root_dir)
