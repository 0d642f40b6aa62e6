"""Configuration of a test run.

The configuration is created once when the process starts, either from the
command line or from the environment, and then handed to everything that
needs it.

"""

import argparse
import dataclasses
import enum
import os
import platform
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field

#: environment variable names from which :py:meth:`RunConfig.from_env` reads
VERSION_ENVVAR_NAME = "IMAGE_VERSION"
ARCH_ENVVAR_NAME = "IMAGE_ARCH"
OS_NAMES_ENVVAR_NAME = "IMAGE_OS_NAMES"
REGISTRY_ENVVAR_NAME = "REGISTRY"
REPO_PREFIX_ENVVAR_NAME = "REPO_PREFIX"
IMAGE_INFO_PATH_ENVVAR_NAME = "IMAGE_INFO_PATH"
SOURCE_REPO_ROOT_ENVVAR_NAME = "SOURCE_REPO_ROOT"
PULL_IMAGES_ENVVAR_NAME = "PULL_IMAGES"
DISABLE_HTTP_VERIFICATION_ENVVAR_NAME = "DISABLE_HTTP_VERIFICATION"
CONTAINER_ENGINE_ENVVAR_NAME = "CONTAINER_ENGINE"
REGISTRY_USERNAME_ENVVAR_NAME = "REGISTRY_USERNAME"
INTERNAL_ACCESS_TOKEN_ENVVAR_NAME = "INTERNAL_ACCESS_TOKEN"

_MACHINE_TO_ARCH: dict[str, str] = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
}


@enum.unique
class Category(enum.Enum):
    """The categories of tests that can be selected for a run."""

    RUNTIME = "runtime"
    RUNTIME_DEPS = "runtime-deps"
    ASPNET = "aspnet"
    SDK = "sdk"
    PRE_BUILD = "pre-build"
    SAMPLE = "sample"
    IMAGE_SIZE = "image-size"
    MONITOR = "monitor"

    def __str__(self) -> str:
        return self.value


def host_architecture() -> str:
    """The architecture of this machine in the naming of container images."""
    machine = platform.machine().lower()
    return _MACHINE_TO_ARCH.get(machine, machine)


def _split_os_names(value: str) -> tuple[str, ...]:
    return tuple(name.strip() for name in value.split(",") if name.strip())


@dataclass(frozen=True, kw_only=True)
class RunConfig:
    #: dockerfile version (e.g. ``8.0``) under test, ``*`` matches every version
    version: str = "*"

    #: architecture of the images under test
    arch: str = field(default_factory=host_architecture)

    #: operating systems (e.g. ``noble``) of the images under test, empty
    #: means all
    os_names: tuple[str, ...] = ()

    #: registry from which the images are taken, including a trailing slash
    registry: str = ""

    #: prefix of the repository names, e.g. ``public/``
    repo_prefix: str = ""

    #: path to the image info file emitted by the build
    image_info_path: str | None = None

    #: root of the repository containing templates and Dockerfiles
    source_repo_root: str = field(default_factory=os.getcwd)

    #: pull images before testing them instead of using local ones
    pull_images: bool = False

    #: skip probing the HTTP endpoints of web images
    is_http_verification_disabled: bool = False

    #: executable of the container engine
    engine: str = "docker"

    #: user name for logging into :py:attr:`registry` before pulling images
    registry_username: str | None = None

    #: access token for :py:attr:`registry`, it is passed to the engine via
    #: its standard input and never logged
    internal_access_token: str | None = field(default=None, repr=False)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RunConfig":
        """Read the configuration from ``environ`` (defaults to
        :py:data:`os.environ`).

        """
        env = os.environ if environ is None else environ
        kwargs = {
            "version": env.get(VERSION_ENVVAR_NAME) or "*",
            "os_names": _split_os_names(env.get(OS_NAMES_ENVVAR_NAME, "")),
            "registry": env.get(REGISTRY_ENVVAR_NAME, ""),
            "repo_prefix": env.get(REPO_PREFIX_ENVVAR_NAME, ""),
            "image_info_path": env.get(IMAGE_INFO_PATH_ENVVAR_NAME) or None,
            "pull_images": PULL_IMAGES_ENVVAR_NAME in env,
            "is_http_verification_disabled": DISABLE_HTTP_VERIFICATION_ENVVAR_NAME
            in env,
            "engine": env.get(CONTAINER_ENGINE_ENVVAR_NAME) or "docker",
            "registry_username": env.get(REGISTRY_USERNAME_ENVVAR_NAME) or None,
            "internal_access_token": env.get(INTERNAL_ACCESS_TOKEN_ENVVAR_NAME)
            or None,
        }
        if arch := env.get(ARCH_ENVVAR_NAME):
            kwargs["arch"] = arch
        if root := env.get(SOURCE_REPO_ROOT_ENVVAR_NAME):
            kwargs["source_repo_root"] = root

        return cls(**kwargs)

    @classmethod
    def from_args(
        cls, args: argparse.Namespace, environ: Mapping[str, str] | None = None
    ) -> "RunConfig":
        """Build the configuration from parsed command line arguments, values
        that were not passed on the command line are taken from the
        environment.

        """
        base = cls.from_env(environ)
        overrides = {}
        for name in (
            "version",
            "arch",
            "registry",
            "repo_prefix",
            "image_info_path",
            "registry_username",
            "internal_access_token",
        ):
            if (value := getattr(args, name, None)) is not None:
                overrides[name] = value
        if os_names := getattr(args, "os", None):
            overrides["os_names"] = _split_os_names(",".join(os_names))
        if getattr(args, "pull_images", False):
            overrides["pull_images"] = True
        if getattr(args, "disable_http_verification", False):
            overrides["is_http_verification_disabled"] = True

        return dataclasses.replace(base, **overrides)

    @property
    def is_http_verification_enabled(self) -> bool:
        return not self.is_http_verification_disabled
