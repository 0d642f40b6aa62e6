"""Execution of external commands, optionally retried with an exponential
back-off.

"""

import asyncio
import logging
import os
import shlex
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Mapping
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field

from tenacity import AsyncRetrying
from tenacity import RetryCallState
from tenacity import before_sleep_log
from tenacity import retry_if_result
from tenacity import stop_after_attempt
from tenacity import wait_exponential

from dotnet_docker.logger import LOGGER

#: maximum number of attempts of a command that is executed with
#: ``auto_retry=True``
MAX_RETRIES = 5

#: base of the exponential back-off between two attempts
WAIT_FACTOR = 5

#: number of bytes read from the pipes of a child process at once
_CHUNK_SIZE = 2**16

#: callable receiving every line of output of a child process as it arrives
OutputObserver = Callable[[str], None]


@dataclass(frozen=True)
class ExecutionResult:
    """The outcome of a single invocation of an external command."""

    #: exit code of the process
    exit_code: int

    #: captured standard output with leading and trailing whitespace removed
    stdout: str

    #: captured standard error with leading and trailing whitespace removed
    stderr: str

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class ProcessExecutionError(RuntimeError):
    """Raised when a command exits with a non-zero exit code and the caller
    did not ask to ignore errors.

    """

    def __init__(self, command: Sequence[str], result: ExecutionResult) -> None:
        self.command: tuple[str, ...] = tuple(command)
        self.result = result
        super().__init__(
            f"Failed to execute {shlex.join(self.command)}\n{result.stderr}"
        )


def _failed(result: ExecutionResult) -> bool:
    return not result.succeeded


def _last_result(retry_state: RetryCallState) -> ExecutionResult:
    assert retry_state.outcome
    return retry_state.outcome.result()


def _emit_line(
    raw: bytes, lines: list[str], observer: OutputObserver | None
) -> None:
    text = raw.decode(errors="replace").rstrip("\r")
    lines.append(text)
    if observer and text.strip():
        observer(text)


async def _read_lines(
    stream: asyncio.StreamReader, lines: list[str], observer: OutputObserver | None
) -> None:
    # chunked reads, lines of any length are kept in full
    pending = b""
    while chunk := await stream.read(_CHUNK_SIZE):
        *complete, pending = (pending + chunk).split(b"\n")
        for raw in complete:
            _emit_line(raw, lines, observer)
    if pending:
        _emit_line(pending, lines, observer)


async def _write_input(stream: asyncio.StreamWriter, text: str) -> None:
    try:
        stream.write(text.encode())
        await stream.drain()
    except (BrokenPipeError, ConnectionResetError):
        # the child exited without reading its input
        LOGGER.debug("Child process closed its standard input")
    finally:
        stream.close()


@dataclass
class ProcessExecutor:
    """Runs external commands as child processes and captures their output.

    Each invocation is awaited until the child exits. The output is read
    chunk by chunk, split into lines and every line is passed to the observer
    immediately, so that long running commands (e.g. image builds) report
    their progress while they are running. Whenever an invocation ends
    without the child having exited (cancellation, a failing observer), the
    child is killed and reaped.

    With ``auto_retry=True`` a failing command is executed up to
    :py:attr:`max_retries` times in total. Before the retry ``i`` the executor
    waits ``wait_factor ** (i - 1)`` seconds. The waiting is done by
    :py:attr:`_sleep` (:py:func:`asyncio.sleep`), so cancelling the
    surrounding task (e.g. via :py:func:`asyncio.timeout`) aborts a retry
    sequence.

    """

    #: working directory of the child processes (defaults to the current one)
    cwd: str | None = None

    #: environment variables that are added to the environment of the child
    #: processes, the environment of this process is left untouched
    env: Mapping[str, str] = field(default_factory=dict)

    #: maximum number of attempts when retrying
    max_retries: int = MAX_RETRIES

    #: base of the exponential back-off
    wait_factor: int = WAIT_FACTOR

    logger: logging.Logger = LOGGER

    _sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    async def execute(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        ignore_errors: bool = False,
        auto_retry: bool = False,
        observer: OutputObserver | None = None,
        input: str | None = None,
    ) -> ExecutionResult:
        """Run ``command`` with the arguments ``args`` and return its result.

        ``input`` is written to the standard input of the child and is never
        logged.

        Raises:
            :py:class:`ProcessExecutionError`: if the command (or its last
                attempt if ``auto_retry`` is set) exits with a non-zero exit
                code and ``ignore_errors`` is ``False``

        """
        argv = (command, *args)
        if auto_retry:
            result = await self._execute_with_retry(argv, observer, input)
        else:
            result = await self._execute_process(argv, observer, input)

        if not ignore_errors and result.exit_code != 0:
            raise ProcessExecutionError(argv, result)

        return result

    async def execute_with_logging(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        ignore_errors: bool = False,
        auto_retry: bool = False,
        observer: OutputObserver | None = None,
        input: str | None = None,
    ) -> ExecutionResult:
        """Same as :py:meth:`execute`, but logs the command line and forwards
        the output to the logger unless another ``observer`` is provided.

        """
        self.logger.info("Executing: %s", shlex.join((command, *args)))
        return await self.execute(
            command,
            args,
            ignore_errors=ignore_errors,
            auto_retry=auto_retry,
            observer=observer or self.logger.info,
            input=input,
        )

    async def _execute_process(
        self,
        argv: Sequence[str],
        observer: OutputObserver | None,
        input: str | None = None,
    ) -> ExecutionResult:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if input is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            env={**os.environ, **self.env} if self.env else None,
        )
        assert process.stdout and process.stderr

        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        tasks = [
            asyncio.ensure_future(
                _read_lines(process.stdout, stdout_lines, observer)
            ),
            asyncio.ensure_future(
                _read_lines(process.stderr, stderr_lines, observer)
            ),
        ]
        if input is not None:
            assert process.stdin
            tasks.append(asyncio.ensure_future(_write_input(process.stdin, input)))

        try:
            await asyncio.gather(*tasks)
            exit_code = await process.wait()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if process.returncode is None:
                self.logger.debug("Killing %s (pid %d)", argv[0], process.pid)
                process.kill()
                await process.wait()

        return ExecutionResult(
            exit_code=exit_code,
            stdout="\n".join(stdout_lines).strip(),
            stderr="\n".join(stderr_lines).strip(),
        )

    async def _execute_with_retry(
        self,
        argv: Sequence[str],
        observer: OutputObserver | None,
        input: str | None = None,
    ) -> ExecutionResult:
        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, exp_base=self.wait_factor),
            retry=retry_if_result(_failed),
            retry_error_callback=_last_result,
            before_sleep=before_sleep_log(self.logger, logging.WARNING),
        )
        return await retrying(self._execute_process, argv, observer, input)
