from git import (
    BadName,
    Git,
    Repo as GitRepo,
    GitCommandError,
    InvalidGitRepositoryError,
    NoSuchPathError,
)

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from ...config import BASE_TEMP_DIR
from ...models import CommitInfo

from .models import LocalRepo
from .utils import ensure_base_temp_dir, parse_ls_remote, PathLike
from .exceptions import GitCloneError, GitLocalPathError, RepositoryAccessError


class GitFakeCI:
    """
    Высокоуровневый фасад над GitPython для нужд CI:

    - list_heads(uri)               — ветки удалённого репозитория без клонирования;
    - clone(uri, branch, commit)    — временный клон, переключённый ровно на коммит;
    - from_existing_path(path)      — уже существующая директория (режим `run`);
    - commit_info(path, rev)        — автор/сообщение коммита для отчёта.

    Всё, что трогает сеть или диск, уходит в поток через asyncio.to_thread,
    чтобы не блокировать цикл наблюдателя.
    """

    def __init__(self, base_temp_dir: Optional[PathLike] = None) -> None:
        self.base_temp_dir = Path(base_temp_dir) if base_temp_dir else BASE_TEMP_DIR

    async def list_heads(self, uri: str) -> Dict[str, str]:
        """
        `git ls-remote --heads <uri>` → {ветка: коммит} в порядке git.

        :raises RepositoryAccessError: сеть, авторизация, несуществующий URI.
        """
        git_cmd = Git()
        # без терминала: запрос пароля повесил бы весь цикл опроса
        git_cmd.update_environment(GIT_TERMINAL_PROMPT="0")
        try:
            output = await asyncio.to_thread(git_cmd.ls_remote, "--heads", uri)
        except GitCommandError as e:
            raise RepositoryAccessError(
                repository=uri,
                reason=(e.stderr or str(e)).strip(),
                logs=[f"git ls-remote --heads {uri}", str(e)],
            )
        return parse_ls_remote(output)

    async def clone(self, uri: str, branch: str, commit: Optional[str] = None) -> LocalRepo:
        """
        Клонирует репозиторий во временную папку и переключается на commit
        (detached HEAD), чтобы прогон шёл ровно по той ревизии,
        которую увидел опрос, даже если ветка успела уехать.

        :raises GitCloneError: при любых ошибках клонирования/checkout.
        """
        return await asyncio.to_thread(self._clone_sync, uri, branch, commit)

    def _clone_sync(self, uri: str, branch: str, commit: Optional[str]) -> LocalRepo:
        logs: List[str] = []

        base_temp = ensure_base_temp_dir(self.base_temp_dir)
        temp_root = Path(tempfile.mkdtemp(prefix="run_", dir=base_temp))
        repo_dir = temp_root / "repo"

        logs.append(f"Создаём временную папку: {temp_root}")
        logs.append(f"Клонируем репозиторий {uri!r} (ветка {branch}) в {repo_dir}")

        repo_obj: GitRepo | None = None
        try:
            repo_obj = GitRepo.clone_from(uri, repo_dir, branch=branch)
            if commit:
                repo_obj.git.checkout(commit)
                logs.append(f"Переключились на коммит {commit}")
            logs.append(f"Репозиторий успешно клонирован в {repo_dir}")
        except GitCommandError as e:
            logs.append("GitPython: ошибка при выполнении clone_from/checkout.")
            logs.append(str(e))
            shutil.rmtree(temp_root, ignore_errors=True)
            raise GitCloneError(repository=uri, branch=branch, logs=logs)
        finally:
            if repo_obj is not None:
                repo_obj.close()

        return LocalRepo(
            root_dir=temp_root,
            repo_path=repo_dir,
            logs=logs,
            is_temporary=True,
        )

    async def from_existing_path(self, path: PathLike) -> LocalRepo:
        """
        Использует уже существующую директорию как корень репозитория.
        Ничего не копирует и не клонирует, просто валидирует путь.

        :raises GitLocalPathError: если путь не существует или не является директорией.
        """
        logs: List[str] = []

        repo_path = Path(path).resolve()
        logs.append(f"Используем существующий путь как репозиторий: {repo_path}")

        if not repo_path.exists():
            logs.append("Ошибка: указанный путь не существует.")
            raise GitLocalPathError(path=str(repo_path), logs=logs)
        if not repo_path.is_dir():
            logs.append("Ошибка: указанный путь не является директорией.")
            raise GitLocalPathError(path=str(repo_path), logs=logs)

        # Важно: is_temporary = False — cleanup() не будет удалять реальный проект.
        return LocalRepo(
            root_dir=repo_path,
            repo_path=repo_path,
            logs=logs,
            is_temporary=False,
        )

    async def commit_info(self, path: PathLike, rev: str = "HEAD") -> Optional[CommitInfo]:
        """
        Сведения о коммите для отчёта. Для директории без .git — None.
        """
        return await asyncio.to_thread(self._commit_info_sync, Path(path), rev)

    @staticmethod
    def _commit_info_sync(path: Path, rev: str) -> Optional[CommitInfo]:
        try:
            repo_obj = GitRepo(path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            return None
        try:
            commit = repo_obj.commit(rev)
            return CommitInfo(
                hash=commit.hexsha,
                author=commit.author.name or "",
                email=commit.author.email or "",
                message=str(commit.message).strip(),
                date=commit.committed_datetime,
            )
        except (BadName, GitCommandError, ValueError):
            # пустой репозиторий без коммитов
            return None
        finally:
            repo_obj.close()
