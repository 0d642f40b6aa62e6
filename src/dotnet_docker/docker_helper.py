"""Wrapper around the lifecycle of container images, containers and volumes."""

import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field

from dotnet_docker.config import RunConfig
from dotnet_docker.engine import CONTAINER_ADDRESS_FORMAT
from dotnet_docker.engine import EngineCommand
from dotnet_docker.engine import ResourceKind
from dotnet_docker.engine import container_host_port_format
from dotnet_docker.execute import ExecutionResult
from dotnet_docker.execute import ProcessExecutor

#: user that runs the container with administrative privileges on Windows
CONTAINER_ADMINISTRATOR = "ContainerAdministrator"


@dataclass
class DockerHelper:
    """Builds, runs, pulls and deletes container images, containers and
    volumes through the container engine of the :py:attr:`config`.

    Deleting a resource that does not exist is a no-op, pulling an image is
    retried with an exponential back-off.

    """

    config: RunConfig = field(default_factory=RunConfig)

    executor: ProcessExecutor = field(default_factory=ProcessExecutor)

    #: lazily fetched operating system of the container engine's server
    _docker_os: str | None = None

    async def _execute(
        self,
        command: EngineCommand,
        *,
        ignore_errors: bool = False,
        auto_retry: bool = False,
    ) -> ExecutionResult:
        return await self.executor.execute(
            self.config.engine,
            command.to_args(),
            ignore_errors=ignore_errors,
            auto_retry=auto_retry,
        )

    async def _execute_with_logging(
        self,
        command: EngineCommand,
        *,
        ignore_errors: bool = False,
        auto_retry: bool = False,
        input: str | None = None,
    ) -> ExecutionResult:
        return await self.executor.execute_with_logging(
            self.config.engine,
            command.to_args(),
            ignore_errors=ignore_errors,
            auto_retry=auto_retry,
            input=input,
        )

    async def resource_exists(self, kind: ResourceKind, *filter_args: str) -> bool:
        """Check whether a resource of the given ``kind`` matching
        ``filter_args`` exists.

        The listing never raises if the engine reports an error, a resource is
        considered to exist if the listing printed anything.

        """
        result = await self._execute(
            EngineCommand.list_quiet(kind, *filter_args), ignore_errors=True
        )
        return result.stdout.strip() != ""

    async def image_exists(self, tag: str) -> bool:
        return await self.resource_exists(ResourceKind.IMAGE, tag)

    async def container_exists(self, name: str) -> bool:
        return await self.resource_exists(ResourceKind.CONTAINER, "-f", f"name={name}")

    async def volume_exists(self, name: str) -> bool:
        return await self.resource_exists(ResourceKind.VOLUME, "-f", f"name={name}")

    async def build(
        self, dockerfile: str, tag: str, from_image: str, *build_args: str
    ) -> None:
        """Build the image ``tag`` from ``dockerfile`` in the current directory
        of the executor, passing ``from_image`` as the ``base_image`` build
        argument.

        """
        await self._execute_with_logging(
            EngineCommand.build(tag, dockerfile, from_image, build_args)
        )

    async def run(
        self,
        image: str,
        command: str | Sequence[str],
        container_name: str,
        volume_name: str | None = None,
        publish_ports: Sequence[str] = ("80",),
        detach: bool = False,
        run_as_container_administrator: bool = False,
    ) -> str:
        """Run ``command`` in a new container called ``container_name`` and
        return its output (or the container id if ``detach`` is set).

        """
        cmd = shlex.split(command) if isinstance(command, str) else list(command)
        result = await self._execute_with_logging(
            EngineCommand.run(
                image,
                container_name,
                cmd,
                volume=(
                    f"{volume_name}:{await self.container_work_dir()}"
                    if volume_name
                    else None
                ),
                user=CONTAINER_ADMINISTRATOR if run_as_container_administrator else None,
                detach=detach,
                publish_ports=publish_ports,
            )
        )
        return result.stdout

    async def login(self) -> None:
        """Log into the registry of the :py:attr:`config` if an access token
        is configured.

        Raises:
            :py:class:`ValueError`: if a token but no user name is configured

        """
        if not self.config.internal_access_token:
            return
        if not self.config.registry_username:
            raise ValueError("A registry user name is required to use an access token")

        await self._execute_with_logging(
            EngineCommand.login(
                self.config.registry.partition("/")[0], self.config.registry_username
            ),
            auto_retry=True,
            input=self.config.internal_access_token,
        )

    async def pull(self, image: str) -> None:
        await self._execute_with_logging(EngineCommand.pull(image), auto_retry=True)

    async def delete_image(self, tag: str) -> None:
        if await self.image_exists(tag):
            await self._execute_with_logging(
                EngineCommand.remove(ResourceKind.IMAGE, tag)
            )

    async def delete_container(self, name: str) -> None:
        """Remove the container ``name`` if it exists. Its logs are written to
        the log beforehand.

        """
        if await self.container_exists(name):
            await self._execute_with_logging(
                EngineCommand.logs(name), ignore_errors=True
            )
            await self._execute_with_logging(
                EngineCommand.remove(ResourceKind.CONTAINER, name)
            )

    async def delete_volume(self, name: str) -> None:
        if await self.volume_exists(name):
            await self._execute_with_logging(
                EngineCommand.remove(ResourceKind.VOLUME, name)
            )

    async def get_docker_os(self) -> str:
        if self._docker_os is None:
            self._docker_os = (await self._execute(EngineCommand.version())).stdout
        return self._docker_os

    async def is_linux_container_mode_enabled(self) -> bool:
        return (await self.get_docker_os()).lower() == "linux"

    async def container_work_dir(self) -> str:
        return "/sandbox" if await self.is_linux_container_mode_enabled() else "c:\\sandbox"

    async def get_container_work_path(self, relative_path: str) -> str:
        separator = "/" if await self.is_linux_container_mode_enabled() else "\\"
        return f"{await self.container_work_dir()}{separator}{relative_path}"

    async def get_container_address(self, container: str) -> str:
        return (
            await self._execute_with_logging(
                EngineCommand.inspect(CONTAINER_ADDRESS_FORMAT, container)
            )
        ).stdout

    async def get_container_host_port(
        self, container: str, container_port: int = 80
    ) -> str:
        return (
            await self._execute_with_logging(
                EngineCommand.inspect(
                    container_host_port_format(container_port), container
                )
            )
        ).stdout
