"""Generation of Dockerfiles from their templates."""

from dataclasses import dataclass
from pathlib import Path

import aiofiles
import aiofiles.os
import jinja2

from dotnet_docker.logger import LOGGER
from dotnet_docker.manifest import ManifestStore

#: suffix of template files
TEMPLATE_SUFFIX = ".j2"


@dataclass
class DockerfileGenerator:
    """Renders every template (``*.j2``) below :py:attr:`templates_dir` into
    the file with the same relative path (without the ``.j2`` suffix) below
    :py:attr:`output_dir`.

    The templates receive the resolved variables of the manifest as
    ``VARIABLES`` and their own relative path as ``TEMPLATE_PATH``.

    """

    templates_dir: Path

    output_dir: Path

    manifest: ManifestStore

    def __post_init__(self) -> None:
        self.templates_dir = Path(self.templates_dir)
        self.output_dir = Path(self.output_dir)
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(self.templates_dir),
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
        )

    def template_paths(self) -> list[Path]:
        """Paths of all templates relative to :py:attr:`templates_dir`."""
        return sorted(
            path.relative_to(self.templates_dir)
            for path in self.templates_dir.rglob(f"*{TEMPLATE_SUFFIX}")
            if path.is_file()
        )

    def output_path(self, template_path: Path) -> Path:
        return self.output_dir / template_path.with_suffix("")

    def render(self, template_path: Path, variables: dict[str, str]) -> str:
        return self._env.get_template(template_path.as_posix()).render(
            VARIABLES=variables, TEMPLATE_PATH=template_path.as_posix()
        )

    async def generate(self, validate: bool = False) -> list[Path]:
        """Render all templates and return the Dockerfiles whose content
        differs from the rendered template.

        If ``validate`` is ``False``, then the outdated Dockerfiles are
        rewritten, otherwise nothing is written.

        """
        variables = self.manifest.resolved_variables()
        out_of_sync: list[Path] = []

        for template_path in self.template_paths():
            dockerfile = self.output_path(template_path)
            rendered = self.render(template_path, variables)

            current: str | None = None
            if await aiofiles.os.path.exists(dockerfile):
                async with aiofiles.open(dockerfile, "r") as existing:
                    current = await existing.read()

            if current == rendered:
                LOGGER.debug("%s is up to date", dockerfile)
                continue

            out_of_sync.append(dockerfile)
            if validate:
                LOGGER.warning("%s is out of sync with %s", dockerfile, template_path)
            else:
                LOGGER.info("Writing %s", dockerfile)
                await aiofiles.os.makedirs(dockerfile.parent, exist_ok=True)
                async with aiofiles.open(dockerfile, "w") as target:
                    await target.write(rendered)

        return out_of_sync
