import asyncio
import logging
from pathlib import Path

from conftest import FakeEngine
from fakeci.core.models import Status
from fakeci.core.services.executor import JobExecutor, mask_secrets
from fakeci.model import BuiltImage, NamedImage, ResolvedJob, StepSpec


def _job(steps, image=None, **kwargs) -> ResolvedJob:
    return ResolvedJob(
        name=kwargs.pop("name", "job"),
        image=image or NamedImage(name="busybox"),
        steps=[StepSpec.model_validate(s) for s in steps],
        **kwargs,
    )


def _execute(engine, job, tmp_path, **kwargs):
    return asyncio.run(JobExecutor(engine, **kwargs).execute(job, tmp_path))


def test_steps_fail_fast(engine, tmp_path: Path):
    engine.script = {"b": (1, [], ["boom"])}
    job = _job(
        [
            {"name": "A", "exec": ["a"]},
            {"name": "B", "exec": ["b"]},
            {"name": "C", "exec": ["c"]},
        ]
    )

    result = _execute(engine, job, tmp_path)

    assert result.status == Status.FAILED
    assert not result.success
    assert [(s.name, s.status) for s in result.steps] == [
        ("A", Status.SUCCESS),
        ("B", Status.FAILED),
        ("C", Status.SKIPPED),
    ]
    assert engine.executed == ["a", "b"]
    assert result.steps[1].exit_code == 1
    assert result.steps[1].lines("stderr") == ["boom"]
    assert result.steps[2].exit_code is None
    assert "exited with status 1" in result.error


def test_failing_command_stops_remaining_commands_of_step(engine, tmp_path: Path):
    engine.script = {"second": (2, [], [])}
    job = _job([{"exec": ["first", "second", "third"]}])

    result = _execute(engine, job, tmp_path)

    assert engine.executed == ["first", "second"]
    assert result.steps[0].commands_run == ["first", "second"]
    assert result.steps[0].exit_code == 2


def test_all_steps_share_one_container_that_is_removed(engine, tmp_path: Path):
    job = _job([{"exec": ["a", "b"]}, {"exec": ["c"]}])

    result = _execute(engine, job, tmp_path)

    assert result.success
    assert len(engine.containers) == 1
    containers_used = {call[1] for call in engine.calls if call[0] == "exec"}
    assert containers_used == set(engine.containers)
    assert engine.removed == engine.containers
    assert engine.calls[-1][0] == "remove"


def test_container_removed_when_job_fails(engine, tmp_path: Path):
    engine.script = {"false": (1, [], [])}

    _execute(engine, _job([{"exec": ["false"]}]), tmp_path)

    assert engine.removed == engine.containers


def test_container_removed_when_creation_fails(tmp_path: Path):
    engine = FakeEngine(images=["busybox"], fail_create=True)

    result = _execute(engine, _job([{"exec": ["a"]}, {"exec": ["b"]}]), tmp_path)

    assert result.status == Status.FAILED
    assert "no space left on device" in result.error
    assert [s.status for s in result.steps] == [Status.SKIPPED, Status.SKIPPED]
    assert engine.executed == []
    assert engine.removed == engine.containers


def test_container_removed_on_cancellation(engine, tmp_path: Path):
    class SlowEngine(FakeEngine):
        async def exec(self, container, command, timeout=None):
            await asyncio.sleep(3600)

    slow = SlowEngine(images=["busybox"])

    async def scenario():
        task = asyncio.create_task(JobExecutor(slow).execute(_job([{"exec": ["sleep"]}]), tmp_path))
        while not slow.containers:
            await asyncio.sleep(0)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            return True
        return False

    assert asyncio.run(scenario())
    assert slow.removed == slow.containers


def test_container_setup(engine, tmp_path: Path):
    job = _job(
        [{"exec": ["a"]}],
        image=NamedImage(name="docker:dind", privileged=True),
        env={"A": "1"},
        volumes=["/var/run/docker.sock:/var/run/docker.sock", "cache:/cache"],
    )

    _execute(engine, job, tmp_path)

    created = engine.created[0]
    assert created["image"] == "docker:dind"
    assert created["repo_path"] == tmp_path
    assert created["volumes"] == ["/var/run/docker.sock:/var/run/docker.sock", "cache:/cache"]
    assert created["env"] == {"A": "1"}
    assert created["privileged"] is True
    assert created["name"].startswith("fake-ci-job-")


def test_missing_named_image_is_pulled(engine, tmp_path: Path):
    job = _job([{"exec": ["a"]}], image=NamedImage(name="alpine:3"))

    result = _execute(engine, job, tmp_path)

    assert result.success
    assert ("pull", "alpine:3") in engine.calls


def test_present_named_image_is_not_pulled(engine, tmp_path: Path):
    _execute(engine, _job([{"exec": ["a"]}]), tmp_path)

    assert not [c for c in engine.calls if c[0] == "pull"]


def test_pull_failure_fails_job_without_steps(tmp_path: Path):
    engine = FakeEngine(fail_pull=True)

    result = _execute(engine, _job([{"exec": ["a"]}, {"exec": ["b"]}]), tmp_path)

    assert result.status == Status.FAILED
    assert "manifest unknown" in result.error
    assert [s.status for s in result.steps] == [Status.SKIPPED, Status.SKIPPED]
    assert engine.containers == []
    assert engine.executed == []


def test_built_image(engine, tmp_path: Path):
    job = _job(
        [{"exec": ["a"]}],
        image=BuiltImage(dockerfile="ci/Dockerfile", context="ci", build_args=["V=1"]),
        name="Build Me",
    )

    result = _execute(engine, job, tmp_path)

    assert result.success
    build = [c for c in engine.calls if c[0] == "build"][0]
    assert build == ("build", "fake-ci/build-me:latest", "ci/Dockerfile", "ci", ["V=1"], tmp_path)
    assert engine.created[0]["image"] == "fake-ci/build-me:latest"


def test_built_image_with_explicit_name(engine, tmp_path: Path):
    job = _job([{"exec": ["a"]}], image=BuiltImage(name="me/app:ci"))

    _execute(engine, job, tmp_path)

    assert engine.created[0]["image"] == "me/app:ci"


def test_build_failure_fails_job(tmp_path: Path):
    engine = FakeEngine(fail_build=True)

    result = _execute(engine, _job([{"exec": ["a"]}], image=BuiltImage()), tmp_path)

    assert result.status == Status.FAILED
    assert engine.executed == []


def test_output_is_tagged_and_secrets_masked(engine, tmp_path: Path):
    engine.script = {"leak": (0, ["token is shh!", "fine"], ["warn shh!"])}
    job = _job([{"exec": ["leak"]}], env={"TOKEN": "shh!"}, secrets={"TOKEN": "shh!"})

    result = _execute(engine, job, tmp_path)

    output = result.steps[0].output
    assert [(o.stream, o.line) for o in output] == [
        ("stdout", "token is ***"),
        ("stdout", "fine"),
        ("stderr", "warn ***"),
    ]


def test_mask_secrets_ignores_empty_values():
    assert mask_secrets("abc", {"EMPTY": ""}) == "abc"


def test_step_timeout_is_forwarded(engine, tmp_path: Path):
    _execute(engine, _job([{"exec": ["a"]}]), tmp_path, step_timeout=12.5)

    assert [c[3] for c in engine.calls if c[0] == "exec"] == [12.5]


def test_command_without_exit_code_fails_step(engine, tmp_path: Path):
    engine.script = {"hang": (None, [], [])}

    result = _execute(engine, _job([{"exec": ["hang"]}, {"exec": ["next"]}]), tmp_path)

    assert result.status == Status.FAILED
    assert "did not complete" in result.error
    assert engine.executed == ["hang"]


def test_hello_world(engine, tmp_path: Path, caplog):
    caplog.set_level(logging.INFO, logger="fakeci")
    job = _job(
        [{"name": "Create File", "exec": ["touch /tmp/hello_world"]}],
        name="hello world",
    )

    result = _execute(engine, job, tmp_path)

    assert result.success
    assert len(result.steps) == 1
    step = result.steps[0]
    assert step.exit_code == 0
    assert step.lines("stderr") == []

    messages = [r.getMessage() for r in caplog.records]
    job_line = next(i for i, m in enumerate(messages) if "hello world" in m)
    step_line = next(i for i, m in enumerate(messages) if "Create File" in m)
    command_line = next(i for i, m in enumerate(messages) if "touch /tmp/hello_world" in m)
    assert job_line < step_line < command_line
