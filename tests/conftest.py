from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

# Ensure tests always import the local src tree, not an older installed wheel.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from fakeci.core.models import OutputLine  # noqa: E402
from fakeci.core.services.docker_module import (  # noqa: E402
    CommandOutput,
    ContainerError,
    ImageResolutionError,
)


class FakeEngine:
    """
    In-memory ContainerEngine: records every call, answers commands from a script.

    script maps a command string to (exit_code, stdout lines, stderr lines);
    unknown commands succeed silently.
    """

    def __init__(
        self,
        script: Optional[Dict[str, Tuple[Optional[int], List[str], List[str]]]] = None,
        images: Sequence[str] = (),
        fail_pull: bool = False,
        fail_build: bool = False,
        fail_create: bool = False,
    ) -> None:
        self.script = script or {}
        self.images = set(images)
        self.fail_pull = fail_pull
        self.fail_build = fail_build
        self.fail_create = fail_create
        self.calls: List[tuple] = []
        self.executed: List[str] = []
        self.containers: List[str] = []
        self.removed: List[str] = []
        self.created: List[dict] = []

    async def image_exists(self, image: str) -> bool:
        self.calls.append(("image_exists", image))
        return image in self.images

    async def pull_image(self, image: str) -> None:
        self.calls.append(("pull", image))
        if self.fail_pull:
            raise ImageResolutionError(image=image, reason="manifest unknown")
        self.images.add(image)

    async def build_image(self, tag, dockerfile, context, build_args, cwd) -> None:
        self.calls.append(("build", tag, dockerfile, context, list(build_args), cwd))
        if self.fail_build:
            raise ImageResolutionError(image=tag, reason="build failed")
        self.images.add(tag)

    async def create_container(self, name, image, repo_path, volumes, env, privileged) -> str:
        self.calls.append(("create", name, image))
        self.containers.append(name)
        self.created.append(
            {
                "name": name,
                "image": image,
                "repo_path": repo_path,
                "volumes": list(volumes),
                "env": dict(env),
                "privileged": privileged,
            }
        )
        if self.fail_create:
            raise ContainerError(container=name, reason="no space left on device")
        return name

    async def exec(self, container, command, timeout=None) -> CommandOutput:
        self.calls.append(("exec", container, command, timeout))
        self.executed.append(command)
        exit_code, stdout, stderr = self.script.get(command, (0, [], []))
        lines = [OutputLine(stream="stdout", line=line) for line in stdout]
        lines += [OutputLine(stream="stderr", line=line) for line in stderr]
        return CommandOutput(exit_code=exit_code, lines=lines)

    async def remove_container(self, container: str) -> None:
        self.calls.append(("remove", container))
        self.removed.append(container)


class FakeLister:
    """BranchLister stub: heads per uri, optionally raising."""

    def __init__(self, heads: Optional[Dict[str, Dict[str, str]]] = None, errors: Optional[Dict[str, Exception]] = None) -> None:
        self.heads = heads or {}
        self.errors = errors or {}
        self.calls: List[str] = []

    async def list_heads(self, uri: str) -> Dict[str, str]:
        self.calls.append(uri)
        if uri in self.errors:
            raise self.errors[uri]
        return dict(self.heads.get(uri, {}))


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine(images=["busybox", "rust", "ubuntu"])
