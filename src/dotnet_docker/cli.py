"""Command line driver for updating dependencies, generating Dockerfiles and
testing the images.

"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any
from typing import Literal

from dotnet_docker.config import Category
from dotnet_docker.config import RunConfig
from dotnet_docker.docker_helper import DockerHelper
from dotnet_docker.execute import ProcessExecutionError
from dotnet_docker.execute import ProcessExecutor
from dotnet_docker.logger import LOGGER
from dotnet_docker.manifest import ConfigurationError
from dotnet_docker.manifest import ManifestStore
from dotnet_docker.scenarios import DOCKERFILES_PATH
from dotnet_docker.scenarios import MANIFEST_PATH
from dotnet_docker.scenarios import TEMPLATES_PATH
from dotnet_docker.scenarios import ScenarioError
from dotnet_docker.scenarios import run_category
from dotnet_docker.templates import DockerfileGenerator
from update_dependencies.updater import ChiselToolUpdater
from update_dependencies.updater import VariableUpdater
from update_dependencies.updater import VersionUpdater
from update_dependencies.updater import parse_dependency
from update_dependencies.updater import update_dependencies

ACTION_T = Literal["update-dependencies", "generate-dockerfiles", "run-tests"]

#: errors that are reported without a traceback
_EXPECTED_ERRORS = (
    ConfigurationError,
    ProcessExecutionError,
    ScenarioError,
    ValueError,
    TimeoutError,
    FileNotFoundError,
)


def chisel_variable_name(dockerfile_version: str) -> str:
    return f"chisel|{dockerfile_version}|version"


async def _update_dependencies(args: argparse.Namespace) -> int:
    dockerfile_version: str = args.dockerfile_version
    dependencies = [parse_dependency(value) for value in args.dependency]

    manifest = await ManifestStore.load(args.manifest)

    updaters: list[VariableUpdater] = [
        VersionUpdater(dep.simple_name, dockerfile_version) for dep in dependencies
    ]
    if args.chisel_version:
        updaters.append(
            ChiselToolUpdater(
                args.chisel_variable or chisel_variable_name(dockerfile_version),
                dockerfile_version,
                args.chisel_version,
            )
        )

    updates = update_dependencies(manifest, updaters, dependencies)
    changed = [update for update in updates if update.changed]
    if not changed:
        print("No variables were updated")
        return 0

    await manifest.save()
    for update in changed:
        print(
            f"{update.variable_name}: {update.current_value} -> {update.value} "
            f"({', '.join(str(dep) for dep in update.used_dependencies)})"
        )
    return 0


async def _generate_dockerfiles(args: argparse.Namespace) -> int:
    generator = DockerfileGenerator(
        templates_dir=Path(args.templates),
        output_dir=Path(args.output),
        manifest=await ManifestStore.load(args.manifest),
    )
    out_of_sync = await generator.generate(validate=args.validate)

    if args.validate and out_of_sync:
        print(
            "The following Dockerfiles are out of sync with the templates:\n"
            + "\n".join(str(path) for path in out_of_sync)
        )
        return 1

    for path in out_of_sync:
        print(f"Updated {path}")
    return 0


async def _run_tests(args: argparse.Namespace) -> int:
    config = RunConfig.from_args(args)
    helper = DockerHelper(
        config=config, executor=ProcessExecutor(cwd=config.source_repo_root)
    )
    LOGGER.debug("Running tests with %s", config)

    async with asyncio.timeout(args.timeout):
        for category in args.category:
            await run_category(Category(category), config, helper)

    print(f"Checks of {', '.join(args.category)} passed")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dotnet-docker",
        description="Update, generate and test the .NET container images",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Set the verbosity of the logger to stderr",
    )

    subparsers = parser.add_subparsers(dest="action")

    update_parser = subparsers.add_parser(
        "update-dependencies",
        help="Update the version variables in the manifest",
    )
    update_parser.add_argument(
        "--manifest",
        type=str,
        default=MANIFEST_PATH,
        help=f"Path to the versions manifest (defaults to {MANIFEST_PATH})",
    )
    update_parser.add_argument(
        "--dockerfile-version",
        type=str,
        required=True,
        help="The dockerfile version to update, e.g. 9.0",
    )
    update_parser.add_argument(
        "--dependency",
        type=str,
        action="append",
        default=[],
        help="A product version in the form name=version, e.g. runtime=9.0.1 (can be passed multiple times)",
    )
    update_parser.add_argument(
        "--chisel-version",
        type=str,
        default=None,
        help="New version of the chisel tool, only applied if the runtime is updated too",
    )
    update_parser.add_argument(
        "--chisel-variable",
        type=str,
        default=None,
        help="Name of the chisel tool variable (defaults to chisel|$VERSION|version)",
    )

    generate_parser = subparsers.add_parser(
        "generate-dockerfiles",
        help="Render the Dockerfiles from their templates",
    )
    generate_parser.add_argument("--manifest", type=str, default=MANIFEST_PATH)
    generate_parser.add_argument("--templates", type=str, default=TEMPLATES_PATH)
    generate_parser.add_argument("--output", type=str, default=DOCKERFILES_PATH)
    generate_parser.add_argument(
        "--validate",
        action="store_true",
        help="Only check whether the Dockerfiles are up to date, do not write them",
    )

    test_parser = subparsers.add_parser("run-tests", help="Test the images")
    test_parser.add_argument(
        "--category",
        type=str,
        nargs="+",
        required=True,
        choices=[str(c) for c in Category],
        help="The categories of tests to run",
    )
    test_parser.add_argument("--version", type=str, default=None)
    test_parser.add_argument("--arch", type=str, default=None)
    test_parser.add_argument(
        "--os",
        type=str,
        action="append",
        default=None,
        help="Operating system of the images to test (can be passed multiple times)",
    )
    test_parser.add_argument("--registry", type=str, default=None)
    test_parser.add_argument("--repo-prefix", type=str, default=None)
    test_parser.add_argument(
        "--image-info",
        dest="image_info_path",
        type=str,
        default=None,
        help="Path to the image info file emitted by the build",
    )
    test_parser.add_argument("--pull-images", action="store_true")
    test_parser.add_argument(
        "--registry-username",
        type=str,
        default=None,
        help="User name for logging into the registry before pulling images",
    )
    test_parser.add_argument(
        "--internal-access-token",
        type=str,
        default=None,
        help="Access token for the registry, never logged (prefer the INTERNAL_ACCESS_TOKEN environment variable)",
    )
    test_parser.add_argument("--disable-http-verification", action="store_true")
    test_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Abort the test run after this many seconds",
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.action:
        parser.error("No action specified")

    if args.verbose > 0:
        LOGGER.setLevel((3 - min(args.verbose, 2)) * 10)
    else:
        LOGGER.setLevel(logging.ERROR)

    action: ACTION_T = args.action
    coro: Coroutine[Any, Any, int]
    if action == "update-dependencies":
        coro = _update_dependencies(args)
    elif action == "generate-dockerfiles":
        coro = _generate_dockerfiles(args)
    elif action == "run-tests":
        coro = _run_tests(args)
    else:
        assert False, f"invalid action: {action}"

    try:
        return asyncio.run(coro)
    except _EXPECTED_ERRORS as exc:
        LOGGER.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
