"""Naming of the images under test."""

import enum
from dataclasses import dataclass

from dotnet_docker.config import RunConfig


@enum.unique
class DotNetImageType(enum.Enum):
    """The kinds of .NET images, the value is the repository name."""

    RUNTIME_DEPS = "runtime-deps"
    RUNTIME = "runtime"
    ASPNET = "aspnet"
    SDK = "sdk"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ImageData:
    """A single .NET image of one dockerfile version, operating system and
    architecture.

    """

    version: str
    os: str
    arch: str
    image_type: DotNetImageType

    @property
    def tag(self) -> str:
        return f"{self.version}-{self.os}-{self.arch}"

    def repo(self, config: RunConfig) -> str:
        return f"{config.repo_prefix}dotnet/{self.image_type}"

    def repo_tag(self, config: RunConfig) -> str:
        """The image reference without the registry, as it appears in the
        image info file.

        """
        return f"{self.repo(config)}:{self.tag}"

    def get_image(self, config: RunConfig) -> str:
        """The full image reference including registry and repo prefix."""
        return f"{config.registry}{self.repo_tag(config)}"

    def get_container_name(self, scenario: str) -> str:
        return f"{scenario}-{self.image_type}-{self.version}-{self.os}-{self.arch}".replace(
            ".", "_"
        )


def get_image_data(config: RunConfig, image_type: DotNetImageType) -> list[ImageData]:
    """The images of ``image_type`` selected by ``config``.

    Raises:
        :py:class:`ValueError`: if no concrete version or no operating system
            was configured

    """
    if config.version in ("", "*"):
        raise ValueError("A dockerfile version must be set to test images")
    if not config.os_names:
        raise ValueError("At least one operating system must be set to test images")

    return [
        ImageData(
            version=config.version, os=os_name, arch=config.arch, image_type=image_type
        )
        for os_name in config.os_names
    ]
