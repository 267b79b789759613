import asyncio
import logging
import os
import random
import re
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from ....settings import CODE_MOUNT
from ...models import OutputLine
from .exceptions import ContainerError, DockerExceptions, ImageResolutionError


logger = logging.getLogger(__name__)

DOCKER_NAME_CHARSET = string.ascii_lowercase + string.digits + "_.-"

# Файл внутри контейнера, где между `docker exec` живёт текущая директория шелла
CWD_STATE_FILE = "/tmp/.fakeci-cwd"

# Вывод команд читается кусками, строки любой длины собираются целиком
READ_CHUNK = 65536

# Обёртка вокруг команды шага: восстанавливает cwd прошлой команды,
# выполняет команду и запоминает, где шелл оказался после неё.
STEP_SCRIPT = (
    f'cd "$(cat {CWD_STATE_FILE} 2>/dev/null || echo {CODE_MOUNT})" 2>/dev/null || cd {CODE_MOUNT}\n'
    'eval "$1"\n'
    "rc=$?\n"
    f"pwd > {CWD_STATE_FILE}\n"
    "exit $rc\n"
)


@dataclass
class CommandOutput:
    """
    exit_code — код возврата; None, если команда не успела завершиться.
    lines     — stdout/stderr построчно, в порядке поступления.
    """

    exit_code: Optional[int]
    lines: List[OutputLine] = field(default_factory=list)


class ContainerEngine(Protocol):
    """
    Всё, что исполнителю задач нужно от контейнерного рантайма.
    """

    async def image_exists(self, image: str) -> bool:
        ...

    async def pull_image(self, image: str) -> None:
        ...

    async def build_image(
        self,
        tag: str,
        dockerfile: str,
        context: str,
        build_args: Sequence[str],
        cwd: Path,
    ) -> None:
        ...

    async def create_container(
        self,
        name: str,
        image: str,
        repo_path: Path,
        volumes: Sequence[str],
        env: Dict[str, str],
        privileged: bool,
    ) -> str:
        ...

    async def exec(
        self,
        container: str,
        command: str,
        timeout: Optional[float] = None,
    ) -> CommandOutput:
        ...

    async def remove_container(self, container: str) -> None:
        ...


def _slug(name: str) -> str:
    lowered = name.lower().replace(" ", "-")
    return "".join(ch for ch in lowered if ch in DOCKER_NAME_CHARSET).strip("-_.")


def container_name(job_name: str) -> str:
    """
    Уникальное валидное имя контейнера для задачи: `fake-ci-<job>-<4 символа>`.
    """
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
    slug = _slug(job_name)
    if slug:
        return f"fake-ci-{slug}-{suffix}"
    return f"fake-ci-{suffix}"


def default_image_tag(job_name: str) -> str:
    """
    Тег для образа, собираемого без явного `name`.
    """
    slug = re.sub(r"[^a-z0-9_.-]+", "-", job_name.lower()).strip("-_.") or "job"
    return f"fake-ci/{slug}:latest"


class DockerCLI:
    """
    Реализация ContainerEngine поверх бинарника `docker`.

    Каждая операция запускается отдельным подпроцессом asyncio; значения переменных
    окружения задачи передаются через окружение клиента (`--env KEY`),
    чтобы секреты не светились в командной строке.
    """

    def __init__(self, binary: str = "docker") -> None:
        self.binary = binary

    async def _run(
        self,
        *args: str,
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, str, str]:
        logger.debug("Запускаем \"%s %s\"", self.binary, " ".join(args))
        process_env = None
        if env:
            process_env = {**os.environ, **env}
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                cwd=str(cwd) if cwd else None,
                env=process_env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise DockerExceptions(description=f"docker executable not found on PATH: {self.binary}")
        stdout, stderr = await process.communicate()
        return (
            process.returncode if process.returncode is not None else -1,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    async def image_exists(self, image: str) -> bool:
        code, _, _ = await self._run("image", "inspect", "--format", "{{.Id}}", image)
        return code == 0

    async def pull_image(self, image: str) -> None:
        code, stdout, stderr = await self._run("pull", image)
        if code != 0:
            raise ImageResolutionError(
                image=image,
                reason=stderr.strip() or f"docker pull exited with {code}",
                logs=stdout.splitlines() + stderr.splitlines(),
            )

    async def build_image(
        self,
        tag: str,
        dockerfile: str,
        context: str,
        build_args: Sequence[str],
        cwd: Path,
    ) -> None:
        args: List[str] = ["build", "--file", dockerfile, "--tag", tag]
        for build_arg in build_args:
            args.extend(["--build-arg", build_arg])
        args.append(context)
        code, stdout, stderr = await self._run(*args, cwd=cwd)
        if code != 0:
            raise ImageResolutionError(
                image=tag,
                reason=stderr.strip().splitlines()[-1] if stderr.strip() else f"docker build exited with {code}",
                logs=stdout.splitlines() + stderr.splitlines(),
            )

    async def create_container(
        self,
        name: str,
        image: str,
        repo_path: Path,
        volumes: Sequence[str],
        env: Dict[str, str],
        privileged: bool,
    ) -> str:
        args: List[str] = [
            "run",
            "--detach",
            "--interactive",
            "--tty",
            "--name",
            name,
            f"--workdir={CODE_MOUNT}",
            f"--volume={repo_path}:{CODE_MOUNT}",
        ]
        for volume in volumes:
            args.append(f"--volume={volume}")
        for key in env:
            args.extend(["--env", key])
        if privileged:
            args.append("--privileged")
        args.extend([image, "sh"])

        code, stdout, stderr = await self._run(*args, env=env)
        if code != 0:
            raise ContainerError(
                container=name,
                reason=stderr.strip() or f"docker run exited with {code}",
                logs=stdout.splitlines() + stderr.splitlines(),
            )
        return name

    async def exec(
        self,
        container: str,
        command: str,
        timeout: Optional[float] = None,
    ) -> CommandOutput:
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                "exec",
                container,
                "sh",
                "-c",
                STEP_SCRIPT,
                "fakeci-step",
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise DockerExceptions(description=f"docker executable not found on PATH: {self.binary}")

        lines: List[OutputLine] = []

        def emit(raw: bytes, name: str) -> None:
            lines.append(OutputLine(stream=name, line=raw.decode("utf-8", errors="replace").rstrip("\r")))

        async def pump(stream: asyncio.StreamReader, name: str) -> None:
            # строка может быть длиннее лимита StreamReader.readline()
            buffer = bytearray()
            while True:
                chunk = await stream.read(READ_CHUNK)
                if not chunk:
                    break
                buffer.extend(chunk)
                while True:
                    end = buffer.find(b"\n")
                    if end < 0:
                        break
                    emit(bytes(buffer[:end]), name)
                    del buffer[: end + 1]
            if buffer:
                emit(bytes(buffer), name)

        async def communicate() -> int:
            await asyncio.gather(
                pump(process.stdout, "stdout"),
                pump(process.stderr, "stderr"),
            )
            return await process.wait()

        try:
            exit_code: Optional[int] = await asyncio.wait_for(communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("Команда %r не завершилась за %s с", command, timeout)
            exit_code = None
        except OSError as e:
            raise ContainerError(container=container, reason=f"cannot read output of {command!r}: {e}")
        finally:
            # таймаут, отмена или сбой чтения: docker exec не должен пережить шаг
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
        return CommandOutput(exit_code=exit_code, lines=lines)

    async def remove_container(self, container: str) -> None:
        code, _, stderr = await self._run("rm", "--force", "--volumes", container)
        if code != 0:
            raise ContainerError(container=container, reason=stderr.strip() or "docker rm failed")
