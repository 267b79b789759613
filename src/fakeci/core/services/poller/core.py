import logging
from fnmatch import fnmatchcase
from typing import Dict, List, Protocol

from ....models.schemas import BranchesSpec, WatchedRepository
from ...models import RevisionRef
from ..cache import RefCache


logger = logging.getLogger(__name__)


class BranchLister(Protocol):
    """Источник веток удалённого репозитория (в проде — GitFakeCI)."""

    async def list_heads(self, uri: str) -> Dict[str, str]:
        """{ветка: коммит} в порядке remote."""
        ...


def branch_matches(spec: BranchesSpec, branch: str) -> bool:
    """
    Подходит ли ветка под BranchesSpec.

    Каждый элемент — литерал или shell-glob (`*`, `?`, `[...]`), сравнение
    регистрозависимое; `/` не специален, так что `*` покрывает и `feature/x`.
    Список подходит, если подошёл хотя бы один элемент.
    """
    patterns = [spec] if isinstance(spec, str) else spec
    return any(fnmatchcase(branch, pattern) for pattern in patterns)


class RepositoryPoller:
    """
    Опрашивает один репозиторий и отдаёт ветки, чей коммит отличается от кэша.

    Кэш только читается: записывает его наблюдатель, и только после того,
    как прогон по ревизии завершился.
    """

    def __init__(self, cache: RefCache, lister: BranchLister) -> None:
        self.cache = cache
        self.lister = lister

    async def poll(self, repo: WatchedRepository) -> List[RevisionRef]:
        """
        :raises RepositoryAccessError: если remote недоступен.
        """
        heads = await self.lister.list_heads(repo.uri)
        logger.debug("%s: на remote %d веток", repo.name, len(heads))

        known = self.cache.entries(repo.name)
        changed: List[RevisionRef] = []
        for branch, commit in heads.items():
            if not branch_matches(repo.branch_patterns, branch):
                continue
            if known.get(branch) == commit:
                continue
            logger.debug("%s#%s: %s -> %s", repo.name, branch, known.get(branch), commit)
            changed.append(
                RevisionRef(
                    repository=repo.name,
                    uri=repo.uri,
                    branch=branch,
                    commit=commit,
                )
            )
        return changed
