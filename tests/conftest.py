from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field

import pytest

from dotnet_docker.config import RunConfig
from dotnet_docker.docker_helper import DockerHelper
from dotnet_docker.execute import ExecutionResult
from dotnet_docker.execute import OutputObserver
from dotnet_docker.execute import ProcessExecutor

SUCCESS = ExecutionResult(exit_code=0, stdout="", stderr="")


@dataclass
class FakeExecutor(ProcessExecutor):
    """Executor that records the executed commands instead of running them.

    Results for a command line are queued via :py:meth:`respond`, the last
    queued result is repeated. Commands without a queued result succeed with
    empty output.

    """

    responses: dict[tuple[str, ...], list[ExecutionResult]] = field(
        default_factory=dict
    )
    calls: list[tuple[str, ...]] = field(default_factory=list)
    delays: list[float] = field(default_factory=list)
    inputs: dict[tuple[str, ...], str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._sleep = self._record_sleep

    async def _record_sleep(self, delay: float) -> None:
        self.delays.append(delay)

    def respond(self, argv: Sequence[str], *results: ExecutionResult) -> None:
        self.responses[tuple(argv)] = list(results)

    async def _execute_process(
        self,
        argv: Sequence[str],
        observer: OutputObserver | None,
        input: str | None = None,
    ) -> ExecutionResult:
        argv = tuple(argv)
        self.calls.append(argv)
        if input is not None:
            self.inputs[argv] = input
        queued = self.responses.get(argv)
        if not queued:
            result = SUCCESS
        elif len(queued) > 1:
            result = queued.pop(0)
        else:
            result = queued[0]

        if observer:
            for line in result.stdout.splitlines():
                observer(line)
        return result


@pytest.fixture
def config(tmp_path) -> RunConfig:
    return RunConfig(
        version="9.0",
        arch="amd64",
        os_names=("noble",),
        registry="mcr.microsoft.com/",
        source_repo_root=str(tmp_path),
    )


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def helper(config: RunConfig, executor: FakeExecutor) -> DockerHelper:
    return DockerHelper(config=config, executor=executor)
