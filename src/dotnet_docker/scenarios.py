"""Checks of the images that are run for the selected test categories."""

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from pathlib import Path

import aiohttp
from tenacity import AsyncRetrying
from tenacity import before_sleep_log
from tenacity import retry_if_exception_type
from tenacity import retry_if_result
from tenacity import stop_after_attempt
from tenacity import wait_fixed

from dotnet_docker.config import Category
from dotnet_docker.config import RunConfig
from dotnet_docker.docker_helper import DockerHelper
from dotnet_docker.image_data import DotNetImageType
from dotnet_docker.image_data import ImageData
from dotnet_docker.image_data import get_image_data
from dotnet_docker.image_info import load_image_info
from dotnet_docker.image_info import validate_image_info
from dotnet_docker.logger import LOGGER
from dotnet_docker.manifest import ManifestStore
from dotnet_docker.templates import DockerfileGenerator

#: location of the manifest, relative to the repository root
MANIFEST_PATH = "manifest.versions.json"

#: location of the Dockerfile templates, relative to the repository root
TEMPLATES_PATH = "eng/dockerfile-templates"

#: location of the generated Dockerfiles, relative to the repository root
DOCKERFILES_PATH = "src"

#: Dockerfile of the test application, relative to the repository root
APP_DOCKERFILE_PATH = "tests/projects/Dockerfile"

#: port on which ASP.NET applications listen inside the container
WEB_PORT = 8080

HTTP_CHECK_RETRIES = 5

HTTP_CHECK_DELAY = 2

#: variables that every image defines, ``None`` only checks that the variable
#: is present
_COMMON_ENVIRONMENT: dict[str, str | None] = {
    "APP_UID": "1654",
    "ASPNETCORE_HTTP_PORTS": str(WEB_PORT),
    "DOTNET_RUNNING_IN_CONTAINER": "true",
}

_IMAGE_ENVIRONMENT: dict[DotNetImageType, dict[str, str | None]] = {
    DotNetImageType.RUNTIME_DEPS: {},
    DotNetImageType.RUNTIME: {"DOTNET_VERSION": None},
    DotNetImageType.ASPNET: {"DOTNET_VERSION": None, "ASPNET_VERSION": None},
    DotNetImageType.SDK: {
        "DOTNET_VERSION": None,
        "ASPNET_VERSION": None,
        "DOTNET_SDK_VERSION": None,
        "DOTNET_USE_POLLING_FILE_WATCHER": "true",
        "NUGET_XMLDOC_MODE": "skip",
    },
}


class ScenarioError(RuntimeError):
    """Raised when a check of an image failed."""


def expected_environment(image_type: DotNetImageType) -> dict[str, str | None]:
    return {**_COMMON_ENVIRONMENT, **_IMAGE_ENVIRONMENT[image_type]}


def parse_environment(output: str) -> dict[str, str]:
    """Parse the output of :command:`printenv` into a dictionary."""
    env = {}
    for line in output.splitlines():
        name, sep, value = line.partition("=")
        if sep:
            env[name] = value
    return env


async def verify_dockerfile_templates(config: RunConfig) -> None:
    root = Path(config.source_repo_root)
    generator = DockerfileGenerator(
        templates_dir=root / TEMPLATES_PATH,
        output_dir=root / DOCKERFILES_PATH,
        manifest=await ManifestStore.load(root / MANIFEST_PATH),
    )
    if out_of_sync := await generator.generate(validate=True):
        raise ScenarioError(
            "The Dockerfiles are out of sync with the templates: "
            f"{', '.join(str(p) for p in out_of_sync)}. Update the Dockerfiles "
            "by running `dotnet-docker generate-dockerfiles`."
        )


async def verify_image_info(config: RunConfig, images: list[ImageData]) -> None:
    if not config.image_info_path:
        LOGGER.debug("No image info configured, skipping its validation")
        return

    image_info = await load_image_info(config.image_info_path)
    if problems := validate_image_info(
        image_info, [image.repo_tag(config) for image in images]
    ):
        raise ScenarioError(
            f"Invalid image info {config.image_info_path}:\n" + "\n".join(problems)
        )


async def verify_environment_variables(
    helper: DockerHelper, image_data: ImageData, config: RunConfig
) -> None:
    container_name = image_data.get_container_name("env")
    try:
        output = await helper.run(
            image_data.get_image(config),
            "printenv",
            container_name,
            publish_ports=(),
        )
    finally:
        await helper.delete_container(container_name)

    actual = parse_environment(output)
    mismatches = []
    for name, value in expected_environment(image_data.image_type).items():
        if name not in actual:
            mismatches.append(f"{name} is not set")
        elif value is not None and actual[name] != value:
            mismatches.append(f"{name}={actual[name]}, expected {value}")

    if mismatches:
        raise ScenarioError(
            f"Unexpected environment in {image_data.get_image(config)}: "
            + "; ".join(mismatches)
        )


async def verify_app_scenario(
    helper: DockerHelper, image_data: ImageData, config: RunConfig
) -> None:
    """Build the test application with the SDK image, run it on the image
    under test and remove the application image again.

    """
    sdk_image = dataclasses.replace(image_data, image_type=DotNetImageType.SDK)
    app_name = image_data.get_container_name("app")
    tag = f"{app_name}:latest"
    try:
        await helper.build(
            str(Path(config.source_repo_root) / APP_DOCKERFILE_PATH),
            tag,
            sdk_image.get_image(config),
            f"runtime_image={image_data.get_image(config)}",
        )
        await helper.run(tag, (), app_name, publish_ports=())
    finally:
        await helper.delete_container(app_name)
        await helper.delete_image(tag)


async def _get_status(session: aiohttp.ClientSession, url: str) -> int:
    async with session.get(url) as response:
        LOGGER.info("%s responded with %d", url, response.status)
        return response.status


async def check_http_endpoint(
    url: str, retries: int = HTTP_CHECK_RETRIES, delay: float = HTTP_CHECK_DELAY
) -> None:
    """Send ``GET`` requests to ``url`` until it responds with status 200.

    Raises:
        :py:class:`ScenarioError`: if no request succeeded after ``retries``
            attempts

    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(retries),
        wait=wait_fixed(delay),
        retry=retry_if_result(lambda status: status != 200)
        | retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
        retry_error_callback=lambda retry_state: None,
        before_sleep=before_sleep_log(LOGGER, logging.WARNING),
    )
    async with aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=30)
    ) as session:
        if await retrying(_get_status, session, url) != 200:
            raise ScenarioError(f"{url} did not respond successfully")


async def verify_web_scenario(
    helper: DockerHelper, image: str, container_name: str, config: RunConfig
) -> None:
    try:
        await helper.run(
            image,
            (),
            container_name,
            publish_ports=(str(WEB_PORT),),
            detach=True,
        )
        if config.is_http_verification_enabled:
            port = await helper.get_container_host_port(container_name, WEB_PORT)
            await check_http_endpoint(f"http://localhost:{port}/")
        else:
            LOGGER.info("HTTP verification is disabled, not probing %s", image)
    finally:
        await helper.delete_container(container_name)


def _sample_image(config: RunConfig, name: str) -> str:
    return f"{config.registry}{config.repo_prefix}dotnet/samples:{name}"


async def _prepare_images(
    helper: DockerHelper, config: RunConfig, image_type: DotNetImageType
) -> list[ImageData]:
    images = get_image_data(config, image_type)
    if config.pull_images:
        await helper.login()
        for image in images:
            await helper.pull(image.get_image(config))
    await verify_image_info(config, images)
    return images


def _image_checks(
    image_type: DotNetImageType, with_app: bool = False
) -> Callable[[RunConfig, DockerHelper], Awaitable[None]]:
    async def _check(config: RunConfig, helper: DockerHelper) -> None:
        for image in await _prepare_images(helper, config, image_type):
            await verify_environment_variables(helper, image, config)
            if with_app:
                await verify_app_scenario(helper, image, config)

    return _check


async def _check_templates(config: RunConfig, helper: DockerHelper) -> None:
    await verify_dockerfile_templates(config)


async def _check_samples(config: RunConfig, helper: DockerHelper) -> None:
    dotnetapp = _sample_image(config, "dotnetapp")
    aspnetapp = _sample_image(config, "aspnetapp")
    if config.pull_images:
        await helper.login()
        await helper.pull(dotnetapp)
        await helper.pull(aspnetapp)

    await helper.run(dotnetapp, (), "sample-dotnetapp", publish_ports=())
    await verify_web_scenario(helper, aspnetapp, "sample-aspnetapp", config)


CATEGORY_CHECKS: dict[Category, Callable[[RunConfig, DockerHelper], Awaitable[None]]] = {
    Category.PRE_BUILD: _check_templates,
    Category.RUNTIME_DEPS: _image_checks(DotNetImageType.RUNTIME_DEPS),
    Category.RUNTIME: _image_checks(DotNetImageType.RUNTIME, with_app=True),
    Category.ASPNET: _image_checks(DotNetImageType.ASPNET, with_app=True),
    Category.SDK: _image_checks(DotNetImageType.SDK),
    Category.SAMPLE: _check_samples,
}


async def run_category(
    category: Category, config: RunConfig, helper: DockerHelper
) -> None:
    if (check := CATEGORY_CHECKS.get(category)) is None:
        LOGGER.warning("No checks are registered for the category %s", category)
        return

    LOGGER.info("Running the %s checks", category)
    await check(config, helper)
