"""Access to the version variables stored in :file:`manifest.versions.json`."""

import enum
import json
import re
import types
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

import aiofiles

from dotnet_docker.logger import LOGGER

#: matches references to other variables, e.g. ``$(dotnet|8.0|product-version)``
_VARIABLE_REF_RE = re.compile(r"\$\(([^)]+)\)")


class ConfigurationError(KeyError):
    """Raised when a variable is missing from the manifest or cannot be
    resolved.

    """

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else super().__str__()


@enum.unique
class VersionType(enum.Enum):
    BUILD = "build-version"
    PRODUCT = "product-version"

    def __str__(self) -> str:
        return self.value


def get_version_variable_name(
    version_type: VersionType, simple_name: str, dockerfile_version: str
) -> str:
    """Name of the variable storing the version of ``simple_name`` for the
    dockerfile version ``dockerfile_version``, e.g.
    ``runtime|8.0|build-version``.

    """
    return f"{simple_name}|{dockerfile_version}|{version_type}"


@dataclass
class ManifestStore:
    """Key-value view of the ``variables`` of a versions manifest.

    Values may reference other variables via ``$(name)``, these references
    are resolved by :py:meth:`get_variable_value`.

    """

    variables: dict[str, str] = field(default_factory=dict)

    #: file from which the manifest was loaded and to which it is saved
    path: Path | None = None

    #: all other top level entries of the manifest, preserved when saving
    _extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, document: Mapping, path: Path | None = None) -> "ManifestStore":
        if not isinstance(variables := document.get("variables"), dict):
            raise ValueError("The manifest has no 'variables' object")
        return cls(
            variables={str(k): str(v) for k, v in variables.items()},
            path=path,
            _extra={k: v for k, v in document.items() if k != "variables"},
        )

    @classmethod
    async def load(cls, path: str | Path) -> "ManifestStore":
        async with aiofiles.open(path, "r") as manifest_file:
            document = json.loads(await manifest_file.read())
        LOGGER.debug("Loaded manifest from %s", path)
        return cls.from_dict(document, path=Path(path))

    def get_raw_value(self, name: str) -> str:
        try:
            return self.variables[name]
        except KeyError:
            raise ConfigurationError(
                f"Variable '{name}' is not defined in the manifest"
            ) from None

    def get_variable_value(self, name: str) -> str:
        """Return the value of the variable ``name`` with all references to
        other variables substituted.

        Raises:
            :py:class:`ConfigurationError`: if the variable or one of the
                variables it references is missing or the references form a
                cycle

        """
        return self._resolve(name, ())

    def _resolve(self, name: str, seen: tuple[str, ...]) -> str:
        if name in seen:
            raise ConfigurationError(
                f"Cyclic variable reference: {' -> '.join((*seen, name))}"
            )
        return _VARIABLE_REF_RE.sub(
            lambda match: self._resolve(match.group(1), (*seen, name)),
            self.get_raw_value(name),
        )

    def set_variable_value(self, name: str, value: str) -> None:
        """Set the variable ``name`` to ``value``, the variable must exist."""
        old_value = self.get_raw_value(name)
        if old_value != value:
            LOGGER.info("Updating %s: %s -> %s", name, old_value, value)
        self.variables[name] = value

    def snapshot(self) -> "ManifestStore":
        """A copy of this manifest whose variables cannot be modified."""
        return ManifestStore(
            variables=types.MappingProxyType(dict(self.variables)),
            path=self.path,
            _extra=self._extra,
        )

    def resolved_variables(self) -> dict[str, str]:
        return {name: self.get_variable_value(name) for name in self.variables}

    def to_dict(self) -> dict:
        return {**self._extra, "variables": dict(self.variables)}

    async def save(self, path: str | Path | None = None) -> None:
        target = path or self.path
        if target is None:
            raise ValueError("No path to save the manifest to")
        async with aiofiles.open(target, "w") as manifest_file:
            await manifest_file.write(json.dumps(self.to_dict(), indent=2) + "\n")
