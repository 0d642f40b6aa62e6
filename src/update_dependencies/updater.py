"""Updaters for the version variables of the versions manifest.

An update pass receives the versions of the products that were released
(:py:class:`DependencyInfo`) and lets every :py:class:`VariableUpdater`
decide which value its variable should have afterwards.

"""

import abc
from collections.abc import Iterable
from collections.abc import Sequence
from dataclasses import dataclass

from dotnet_docker.logger import LOGGER
from dotnet_docker.manifest import ManifestStore
from dotnet_docker.manifest import VersionType
from dotnet_docker.manifest import get_version_variable_name

#: name of the dependency that chiseled images are built from
RUNTIME_DEPENDENCY_NAME = "runtime"


@dataclass(frozen=True)
class DependencyInfo:
    """The version of a product that is available for an update pass."""

    #: name of the product, e.g. ``runtime`` or ``sdk``
    simple_name: str

    #: version of the product, e.g. ``9.0.1``
    simple_version: str

    def __str__(self) -> str:
        return f"{self.simple_name} {self.simple_version}"


def parse_dependency(text: str) -> DependencyInfo:
    """Parse a dependency from the form ``name=version``."""
    name, sep, version = text.partition("=")
    if not sep or not name.strip() or not version.strip():
        raise ValueError(f"Invalid dependency '{text}', expected 'name=version'")
    return DependencyInfo(simple_name=name.strip(), simple_version=version.strip())


def _find_dependency(
    dependencies: Iterable[DependencyInfo], simple_name: str
) -> DependencyInfo | None:
    return next((dep for dep in dependencies if dep.simple_name == simple_name), None)


def resolve_chisel_tool_version(
    manifest: ManifestStore,
    variable_name: str,
    dockerfile_version: str,
    proposed_value: str,
    available_dependencies: Iterable[DependencyInfo],
) -> tuple[str, tuple[DependencyInfo, ...]]:
    """Decide whether the chisel tool variable ``variable_name`` is changed to
    ``proposed_value``.

    The chisel tool only matters for the runtime images and a new chisel tool
    on its own does not change the resulting images. The variable is
    therefore only updated together with the runtime of the same dockerfile
    version. Otherwise the current value is returned with no dependencies.

    Returns:
        the value of the variable after the update and the dependencies that
        caused a change (empty if the value was kept)

    Raises:
        :py:class:`~dotnet_docker.manifest.ConfigurationError`: if the
            variable or the runtime's build version is missing from the
            manifest

    """
    current_value = manifest.get_variable_value(variable_name)

    runtime_dependency = _find_dependency(
        available_dependencies, RUNTIME_DEPENDENCY_NAME
    )
    if runtime_dependency is None or dockerfile_version not in variable_name:
        return current_value, ()

    current_runtime_version = manifest.get_variable_value(
        get_version_variable_name(
            VersionType.BUILD, RUNTIME_DEPENDENCY_NAME, dockerfile_version
        )
    )
    if runtime_dependency.simple_version == current_runtime_version:
        return current_value, ()

    return proposed_value, (runtime_dependency,)


@dataclass(frozen=True)
class VariableUpdate:
    """The result of resolving one variable during an update pass."""

    variable_name: str

    dockerfile_version: str

    current_value: str

    #: value that the updater would set if its conditions are met
    proposed_value: str | None

    #: value of the variable after the update pass
    value: str

    #: dependencies that justify the change, empty if nothing changed
    used_dependencies: tuple[DependencyInfo, ...] = ()

    @property
    def changed(self) -> bool:
        return self.value != self.current_value


class VariableUpdater(abc.ABC):
    """Base class of the updaters of a single manifest variable."""

    def __init__(self, variable_name: str, dockerfile_version: str) -> None:
        self.variable_name = variable_name
        self.dockerfile_version = dockerfile_version

    @property
    def proposed_value(self) -> str | None:
        return None

    @abc.abstractmethod
    def try_get_desired_value(
        self, manifest: ManifestStore, dependencies: Sequence[DependencyInfo]
    ) -> tuple[str, tuple[DependencyInfo, ...]]:
        """Return the value the variable should have and the dependencies
        that were used to determine it.

        """

    def resolve(
        self, manifest: ManifestStore, dependencies: Sequence[DependencyInfo]
    ) -> VariableUpdate:
        value, used = self.try_get_desired_value(manifest, dependencies)
        return VariableUpdate(
            variable_name=self.variable_name,
            dockerfile_version=self.dockerfile_version,
            current_value=manifest.get_variable_value(self.variable_name),
            proposed_value=self.proposed_value,
            value=value,
            used_dependencies=used,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.variable_name!r})"


class ChiselToolUpdater(VariableUpdater):
    """Updates the chisel tool version of a dockerfile version, but only when
    the runtime of that dockerfile version is updated as well.

    """

    def __init__(
        self, variable_name: str, dockerfile_version: str, new_value: str
    ) -> None:
        super().__init__(variable_name, dockerfile_version)
        self._new_value = new_value

    @property
    def proposed_value(self) -> str:
        return self._new_value

    def try_get_desired_value(
        self, manifest: ManifestStore, dependencies: Sequence[DependencyInfo]
    ) -> tuple[str, tuple[DependencyInfo, ...]]:
        return resolve_chisel_tool_version(
            manifest,
            self.variable_name,
            self.dockerfile_version,
            self._new_value,
            dependencies,
        )


class VersionUpdater(VariableUpdater):
    """Sets the version variable of a product to the version of the
    dependency with the same name.

    """

    def __init__(
        self,
        simple_name: str,
        dockerfile_version: str,
        version_type: VersionType = VersionType.BUILD,
    ) -> None:
        super().__init__(
            get_version_variable_name(version_type, simple_name, dockerfile_version),
            dockerfile_version,
        )
        self.simple_name = simple_name

    def try_get_desired_value(
        self, manifest: ManifestStore, dependencies: Sequence[DependencyInfo]
    ) -> tuple[str, tuple[DependencyInfo, ...]]:
        current_value = manifest.get_variable_value(self.variable_name)
        dependency = _find_dependency(dependencies, self.simple_name)
        if dependency is None or dependency.simple_version == current_value:
            return current_value, ()
        return dependency.simple_version, (dependency,)


def update_dependencies(
    manifest: ManifestStore,
    updaters: Iterable[VariableUpdater],
    dependencies: Sequence[DependencyInfo],
) -> list[VariableUpdate]:
    """Run an update pass of all ``updaters`` and write the changed values
    into ``manifest``.

    All updaters see the manifest as it was before the pass, so the result
    does not depend on the order of the updaters.

    """
    snapshot = manifest.snapshot()
    updates = [updater.resolve(snapshot, dependencies) for updater in updaters]

    for update in updates:
        if update.changed:
            LOGGER.info(
                "%s: %s -> %s (%s)",
                update.variable_name,
                update.current_value,
                update.value,
                ", ".join(str(dep) for dep in update.used_dependencies),
            )
            manifest.set_variable_value(update.variable_name, update.value)
        else:
            LOGGER.debug("%s is up to date", update.variable_name)

    return updates
