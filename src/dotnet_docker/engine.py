"""Typed construction of container engine command lines."""

import enum
import shlex
from collections.abc import Sequence
from dataclasses import dataclass

#: go template printing the operating system of the engine's server
SERVER_OS_FORMAT = "{{ .Server.Os }}"

#: go template printing the IP addresses of a container
CONTAINER_ADDRESS_FORMAT = "{{range .NetworkSettings.Networks}}{{.IPAddress}}{{end}}"


def container_host_port_format(container_port: int) -> str:
    """Go template printing the host port to which ``container_port`` of a
    container is published.

    """
    return (
        "{{(index (index .NetworkSettings.Ports "
        f'"{container_port}/tcp") 0).HostPort}}}}'
    )


@enum.unique
class ResourceKind(enum.Enum):
    """Kinds of resources managed by the container engine."""

    IMAGE = "image"
    CONTAINER = "container"
    VOLUME = "volume"

    def __str__(self) -> str:
        return self.value


@enum.unique
class Subcommand(enum.Enum):
    """Subcommands of the container engine that are used by the test
    harness.

    """

    BUILD = ("build",)
    RUN = ("run",)
    PULL = ("pull",)
    IMAGE_RM = ("image", "rm")
    CONTAINER_RM = ("container", "rm")
    VOLUME_RM = ("volume", "rm")
    IMAGE_LS = ("image", "ls")
    CONTAINER_LS = ("container", "ls")
    VOLUME_LS = ("volume", "ls")
    INSPECT = ("inspect",)
    VERSION = ("version",)
    LOGS = ("logs",)
    LOGIN = ("login",)

    def __str__(self) -> str:
        return " ".join(self.value)


_RM_SUBCOMMANDS: dict[ResourceKind, Subcommand] = {
    ResourceKind.IMAGE: Subcommand.IMAGE_RM,
    ResourceKind.CONTAINER: Subcommand.CONTAINER_RM,
    ResourceKind.VOLUME: Subcommand.VOLUME_RM,
}

_LS_SUBCOMMANDS: dict[ResourceKind, Subcommand] = {
    ResourceKind.IMAGE: Subcommand.IMAGE_LS,
    ResourceKind.CONTAINER: Subcommand.CONTAINER_LS,
    ResourceKind.VOLUME: Subcommand.VOLUME_LS,
}


@dataclass(frozen=True)
class EngineCommand:
    """A single invocation of the container engine.

    Every argument is kept as a separate element and passed to the engine
    as is, nothing is interpreted by a shell.

    """

    subcommand: Subcommand

    #: arguments following the subcommand
    args: tuple[str, ...] = ()

    def to_args(self) -> list[str]:
        """The arguments to pass to the engine executable."""
        return [*self.subcommand.value, *self.args]

    def __str__(self) -> str:
        return shlex.join(self.to_args())

    @staticmethod
    def build(
        tag: str,
        dockerfile: str,
        from_image: str,
        build_args: Sequence[str] = (),
        context: str = ".",
    ) -> "EngineCommand":
        args = ["-t", tag, "--build-arg", f"base_image={from_image}"]
        for build_arg in build_args:
            args.extend(("--build-arg", build_arg))
        args.extend(("-f", dockerfile, context))
        return EngineCommand(Subcommand.BUILD, tuple(args))

    @staticmethod
    def run(
        image: str,
        container_name: str,
        command: Sequence[str] = (),
        *,
        volume: str | None = None,
        user: str | None = None,
        detach: bool = False,
        publish_ports: Sequence[str] = ("80",),
    ) -> "EngineCommand":
        args = ["--rm", "--name", container_name]
        if volume:
            args.extend(("-v", volume))
        if user:
            args.extend(("-u", user))
        if detach:
            args.extend(("-d", "-t"))
        for port in publish_ports:
            args.extend(("-p", port))
        args.append(image)
        args.extend(command)
        return EngineCommand(Subcommand.RUN, tuple(args))

    @staticmethod
    def pull(image: str) -> "EngineCommand":
        return EngineCommand(Subcommand.PULL, (image,))

    @staticmethod
    def remove(kind: ResourceKind, name: str) -> "EngineCommand":
        return EngineCommand(_RM_SUBCOMMANDS[kind], ("-f", name))

    @staticmethod
    def list_quiet(kind: ResourceKind, *filter_args: str) -> "EngineCommand":
        return EngineCommand(_LS_SUBCOMMANDS[kind], ("-q", *filter_args))

    @staticmethod
    def inspect(format_template: str, name: str) -> "EngineCommand":
        return EngineCommand(Subcommand.INSPECT, ("-f", format_template, name))

    @staticmethod
    def version(format_template: str = SERVER_OS_FORMAT) -> "EngineCommand":
        return EngineCommand(Subcommand.VERSION, ("-f", format_template))

    @staticmethod
    def logs(container_name: str) -> "EngineCommand":
        return EngineCommand(Subcommand.LOGS, (container_name,))

    @staticmethod
    def login(registry: str, username: str) -> "EngineCommand":
        """Log into ``registry``, the password is read from the standard input."""
        args = ["-u", username, "--password-stdin"]
        if registry:
            args.append(registry)
        return EngineCommand(Subcommand.LOGIN, tuple(args))
