import asyncio
from pathlib import Path
from typing import List

import pytest

from conftest import FakeLister
from fakeci.core.models import PipelineResult, RevisionRef
from fakeci.core.services.cache import RefCache
from fakeci.core.services.git_module import GitCloneError, RepositoryAccessError
from fakeci.core.services.notifiers import NotifierDispatcher
from fakeci.core.services.poller import RepositoryPoller
from fakeci.core.services.watcher import Watcher, WatcherState
from fakeci.exception import CacheIOError
from fakeci.models.schemas import WatchedRepository, WatcherConfig


class RecordingLauncher:
    def __init__(self, cache: RefCache, fail=(), crash=()):
        self.cache = cache
        self.fail = set(fail)
        self.crash = set(crash)
        self.launched: List[RevisionRef] = []
        self.cache_at_launch: List[str] = []

    async def __call__(self, repo: WatchedRepository, ref: RevisionRef) -> PipelineResult:
        self.launched.append(ref)
        self.cache_at_launch.append(self.cache.get(ref.repository, ref.branch))
        if ref.branch in self.fail:
            raise GitCloneError(repository=repo.uri, branch=ref.branch)
        if ref.branch in self.crash:
            raise PermissionError(13, "Permission denied", "target/debug/x")
        return PipelineResult(name=repo.name, revision=ref)


class RecordingDispatcher(NotifierDispatcher):
    def __init__(self):
        super().__init__()
        self.sent = []

    def dispatch(self, specs, result):
        self.sent.append((list(specs), result))
        return []


def _config(*repos, interval=30) -> WatcherConfig:
    return WatcherConfig(watch_interval=interval, repositories=list(repos))


def _watcher(tmp_path, config, heads, fail=(), errors=None):
    cache = RefCache(tmp_path)
    lister = FakeLister(heads, errors)
    launcher = RecordingLauncher(cache, fail)
    dispatcher = RecordingDispatcher()
    watcher = Watcher(config, cache, RepositoryPoller(cache, lister), launcher, dispatcher)
    return watcher, cache, launcher, dispatcher


APP = WatchedRepository(name="app", uri="git://app", branches="*")
LIB = WatchedRepository(name="lib", uri="git://lib", branches="main")


def test_first_tick_runs_every_branch_once_and_fills_cache(tmp_path: Path):
    heads = {"git://app": {"dev": "d1", "main": "m1", "feature/x": "f1"}}
    watcher, cache, launcher, _ = _watcher(tmp_path, _config(APP), heads)

    results = asyncio.run(watcher.tick())

    assert [r.branch for r in launcher.launched] == ["dev", "main", "feature/x"]
    assert len(results) == 3
    assert RefCache(tmp_path).entries("app") == {"dev": "d1", "main": "m1", "feature/x": "f1"}
    assert watcher.state == WatcherState.IDLE


def test_second_tick_without_changes_runs_nothing(tmp_path: Path):
    heads = {"git://app": {"main": "m1"}}
    watcher, _, launcher, _ = _watcher(tmp_path, _config(APP), heads)

    asyncio.run(watcher.tick())
    second = asyncio.run(watcher.tick())

    assert second == []
    assert len(launcher.launched) == 1


def test_new_commit_is_picked_up(tmp_path: Path):
    heads = {"git://app": {"main": "m1"}}
    watcher, cache, launcher, _ = _watcher(tmp_path, _config(APP), heads)

    asyncio.run(watcher.tick())
    watcher.poller.lister.heads["git://app"]["main"] = "m2"
    asyncio.run(watcher.tick())

    assert [r.commit for r in launcher.launched] == ["m1", "m2"]
    assert cache.get("app", "main") == "m2"


def test_cache_is_written_only_after_the_run(tmp_path: Path):
    heads = {"git://app": {"main": "m1"}}
    watcher, _, launcher, _ = _watcher(tmp_path, _config(APP), heads)

    asyncio.run(watcher.tick())

    assert launcher.cache_at_launch == [None]


def test_failed_launch_is_retried_next_tick(tmp_path: Path):
    heads = {"git://app": {"main": "m1", "dev": "d1"}}
    watcher, cache, launcher, dispatcher = _watcher(tmp_path, _config(APP), heads, fail={"main"})

    first = asyncio.run(watcher.tick())

    assert [r.revision.branch for r in first] == ["dev"]
    assert cache.get("app", "main") is None
    assert len(dispatcher.sent) == 1

    launcher.fail.clear()
    second = asyncio.run(watcher.tick())
    assert [r.revision.branch for r in second] == ["main"]
    assert cache.get("app", "main") == "m1"


def test_unexpected_launch_error_is_contained(tmp_path: Path):
    heads = {"git://app": {"a": "1", "b": "2"}, "git://lib": {"main": "l1"}}
    watcher, cache, launcher, dispatcher = _watcher(tmp_path, _config(APP, LIB), heads)
    launcher.crash.add("a")

    first = asyncio.run(watcher.tick())

    assert [(r.revision.repository, r.revision.branch) for r in first] == [("app", "b"), ("lib", "main")]
    assert cache.get("app", "a") is None
    assert len(dispatcher.sent) == 2
    assert watcher.state == WatcherState.IDLE

    launcher.crash.clear()
    second = asyncio.run(watcher.tick())
    assert [r.revision.branch for r in second] == ["a"]
    assert cache.get("app", "a") == "1"


def test_repository_errors_are_isolated(tmp_path: Path):
    heads = {"git://lib": {"main": "l1", "dev": "l2"}}
    errors = {"git://app": RepositoryAccessError("git://app", "could not resolve host")}
    watcher, cache, launcher, _ = _watcher(tmp_path, _config(APP, LIB), heads, errors=errors)

    results = asyncio.run(watcher.tick())

    assert [(r.repository, r.branch) for r in launcher.launched] == [("lib", "main")]
    assert len(results) == 1
    assert cache.entries("app") == {}
    assert cache.entries("lib") == {"main": "l1"}


def test_runs_follow_repository_then_branch_order(tmp_path: Path):
    heads = {"git://lib": {"main": "l1"}, "git://app": {"b": "2", "a": "1"}}
    watcher, _, launcher, _ = _watcher(tmp_path, _config(LIB, APP), heads)

    asyncio.run(watcher.tick())

    assert [(r.repository, r.branch) for r in launcher.launched] == [
        ("lib", "main"),
        ("app", "b"),
        ("app", "a"),
    ]


def test_results_are_dispatched_to_repository_notifiers(tmp_path: Path):
    repo = WatchedRepository(name="app", uri="git://app", notifiers=[{"type": "log"}])
    watcher, _, _, dispatcher = _watcher(tmp_path, _config(repo), {"git://app": {"main": "m1"}})

    asyncio.run(watcher.tick())

    (specs, result), = dispatcher.sent
    assert [s.type for s in specs] == ["log"]
    assert result.revision.commit == "m1"


def test_cache_write_failure_is_fatal(tmp_path: Path):
    blocker = tmp_path / "cache"
    blocker.write_text("", encoding="utf-8")
    cache = RefCache(blocker)
    launcher = RecordingLauncher(cache)
    watcher = Watcher(
        _config(APP),
        cache,
        RepositoryPoller(cache, FakeLister({"git://app": {"main": "m1"}})),
        launcher,
        RecordingDispatcher(),
    )

    with pytest.raises(CacheIOError):
        asyncio.run(watcher.tick())
    assert watcher.state == WatcherState.IDLE


def test_start_loops_until_stopped(tmp_path: Path):
    heads = {"git://app": {"main": "m1"}}
    watcher, _, launcher, _ = _watcher(tmp_path, _config(APP, interval=3600), heads)
    ticks = []
    original_tick = watcher.tick

    async def counting_tick():
        results = await original_tick()
        ticks.append(len(results))
        if len(ticks) == 1:
            # the next wait must be interrupted by stop() instead of lasting an hour
            asyncio.get_running_loop().call_later(0.01, watcher.stop)
        return results

    watcher.tick = counting_tick

    asyncio.run(asyncio.wait_for(watcher.start(), timeout=5))

    assert ticks == [1]
    assert watcher.stopping


def test_stop_during_tick_leaves_remaining_revisions_for_later(tmp_path: Path):
    heads = {"git://app": {"a": "1", "b": "2"}}
    watcher, cache, launcher, _ = _watcher(tmp_path, _config(APP), heads)
    original = launcher.__call__

    async def stopping_launcher(repo, ref):
        result = await original(repo, ref)
        watcher.stop()
        return result

    watcher.launcher = stopping_launcher

    asyncio.run(watcher.tick())

    assert [r.branch for r in launcher.launched] == ["a"]
    assert cache.entries("app") == {"a": "1"}
