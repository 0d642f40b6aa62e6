"""Parsing and validation of the image info file that the build emits for
the images it published.

"""

import json
from collections.abc import Iterable
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

import aiofiles


@dataclass(frozen=True)
class PlatformInfo:
    """A single image built from one Dockerfile for one platform."""

    dockerfile: str
    architecture: str
    os_version: str
    digest: str = ""
    simple_tags: tuple[str, ...] = ()

    @staticmethod
    def from_dict(data: dict) -> "PlatformInfo":
        try:
            return PlatformInfo(
                dockerfile=data["dockerfile"],
                architecture=data.get("architecture", ""),
                os_version=data.get("osVersion", ""),
                digest=data.get("digest", ""),
                simple_tags=tuple(data.get("simpleTags", ())),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Invalid platform entry: {data!r}") from exc


@dataclass(frozen=True)
class RepoInfo:
    #: name of the repository, e.g. ``dotnet/runtime``
    repo: str

    platforms: tuple[PlatformInfo, ...] = ()


@dataclass
class ImageInfo:
    repos: list[RepoInfo] = field(default_factory=list)

    @staticmethod
    def from_dict(data: dict) -> "ImageInfo":
        if not isinstance(data, dict) or not isinstance(data.get("repos"), list):
            raise ValueError("The image info has no 'repos' list")

        repos = []
        for repo in data["repos"]:
            if not isinstance(repo, dict) or "repo" not in repo:
                raise ValueError(f"Invalid repo entry: {repo!r}")
            if not all(isinstance(image, dict) for image in repo.get("images", [])):
                raise ValueError(f"Invalid images of {repo['repo']}")
            repos.append(
                RepoInfo(
                    repo=repo["repo"],
                    platforms=tuple(
                        PlatformInfo.from_dict(platform)
                        for image in repo.get("images", [])
                        for platform in image.get("platforms", [])
                    ),
                )
            )
        return ImageInfo(repos=repos)

    def tags(self) -> set[str]:
        """All tags in the form ``repo:tag``."""
        return {
            f"{repo.repo}:{tag}"
            for repo in self.repos
            for platform in repo.platforms
            for tag in platform.simple_tags
        }


async def load_image_info(path: str | Path) -> ImageInfo:
    async with aiofiles.open(path, "r") as image_info_file:
        contents = await image_info_file.read()
    try:
        return ImageInfo.from_dict(json.loads(contents))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path} is not valid JSON: {exc}") from exc


def validate_image_info(
    image_info: ImageInfo, expected_tags: Iterable[str] = ()
) -> list[str]:
    """Check the image info for platforms without a digest or tags and for
    missing ``expected_tags`` (in the form ``repo:tag``).

    Returns:
        a list of human readable problems, empty if the image info is valid

    """
    problems = []
    for repo in image_info.repos:
        for platform in repo.platforms:
            if not platform.digest:
                problems.append(f"{repo.repo}: {platform.dockerfile} has no digest")
            if not platform.simple_tags:
                problems.append(f"{repo.repo}: {platform.dockerfile} has no tags")

    tags = image_info.tags()
    problems.extend(
        f"Expected tag {tag} is missing" for tag in expected_tags if tag not in tags
    )
    return problems
