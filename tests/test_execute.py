import asyncio
import os
import pathlib
import sys
import time

import pytest

from dotnet_docker.execute import MAX_RETRIES
from dotnet_docker.execute import ExecutionResult
from dotnet_docker.execute import ProcessExecutionError
from dotnet_docker.execute import ProcessExecutor

PY = sys.executable


def _executor_with_recorded_sleep() -> tuple[ProcessExecutor, list[float]]:
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    return ProcessExecutor(_sleep=_sleep), delays


def _counting_script(counter: pathlib.Path, succeed_on_attempt: int = 0) -> str:
    """Python code that counts its invocations in ``counter`` and fails
    unless it is invoked for the ``succeed_on_attempt``-th time.

    """
    return f"""
import pathlib, sys
p = pathlib.Path({str(counter)!r})
n = int(p.read_text()) + 1 if p.exists() else 1
p.write_text(str(n))
print(f"attempt {{n}}", file=sys.stderr)
sys.exit(0 if n == {succeed_on_attempt} else 3)
"""


@pytest.mark.parametrize(
    "wait_factor,expected_delays", [(5, [1, 5, 25, 125]), (2, [1, 2, 4, 8])]
)
@pytest.mark.asyncio
async def test_back_off_grows_by_wait_factor(
    tmp_path: pathlib.Path, wait_factor: int, expected_delays: list[int]
):
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    executor = ProcessExecutor(wait_factor=wait_factor, _sleep=_sleep)
    await executor.execute(
        PY,
        ["-c", _counting_script(tmp_path / "counter")],
        auto_retry=True,
        ignore_errors=True,
    )

    assert delays == expected_delays


@pytest.mark.asyncio
async def test_execute_captures_output():
    res = await ProcessExecutor().execute(
        PY,
        ["-c", "import sys; print('  hello  '); print('oops', file=sys.stderr)"],
    )

    assert res == ExecutionResult(exit_code=0, stdout="hello", stderr="oops")
    assert res.succeeded


@pytest.mark.asyncio
async def test_execute_raises_on_failure():
    with pytest.raises(ProcessExecutionError) as exc_info:
        await ProcessExecutor().execute(
            PY, ["-c", "import sys; print('broken', file=sys.stderr); sys.exit(2)"]
        )

    assert exc_info.value.result.exit_code == 2
    assert exc_info.value.command[0] == PY
    assert "Failed to execute" in str(exc_info.value)
    assert "broken" in str(exc_info.value)


@pytest.mark.asyncio
async def test_execute_ignore_errors_returns_result():
    res = await ProcessExecutor().execute(
        PY, ["-c", "import sys; sys.exit(4)"], ignore_errors=True
    )

    assert res.exit_code == 4
    assert not res.succeeded


@pytest.mark.asyncio
async def test_observer_receives_lines_while_running():
    lines: list[str] = []
    script = "import sys\nfor i in range(3):\n    print(f'line {i}', flush=True)\n"

    res = await ProcessExecutor().execute(PY, ["-c", script], observer=lines.append)

    assert lines == ["line 0", "line 1", "line 2"]
    assert res.stdout == "line 0\nline 1\nline 2"


@pytest.mark.asyncio
async def test_execute_with_logging_uses_logger(caplog: pytest.LogCaptureFixture):
    caplog.set_level("INFO", logger="dotnet_docker")

    await ProcessExecutor().execute_with_logging(PY, ["-c", "print('logged line')"])

    messages = [rec.getMessage() for rec in caplog.records]
    assert any(msg.startswith("Executing: ") for msg in messages)
    assert "logged line" in messages


@pytest.mark.asyncio
async def test_environment_is_passed_to_child_only():
    executor = ProcessExecutor(env={"DOTNET_DOCKER_TEST_VAR": "foo"})

    res = await executor.execute(
        PY, ["-c", "import os; print(os.environ['DOTNET_DOCKER_TEST_VAR'])"]
    )

    assert res.stdout == "foo"
    assert "DOTNET_DOCKER_TEST_VAR" not in os.environ


@pytest.mark.asyncio
async def test_retry_exhausts_with_exponential_back_off(tmp_path: pathlib.Path):
    counter = tmp_path / "counter"
    executor, delays = _executor_with_recorded_sleep()

    res = await executor.execute(
        PY,
        ["-c", _counting_script(counter)],
        auto_retry=True,
        ignore_errors=True,
    )

    assert int(counter.read_text()) == MAX_RETRIES
    assert delays == [1, 5, 25, 125]
    assert res.exit_code == 3
    assert res.stderr == f"attempt {MAX_RETRIES}"


@pytest.mark.asyncio
async def test_retry_raises_after_last_attempt(tmp_path: pathlib.Path):
    executor, delays = _executor_with_recorded_sleep()

    with pytest.raises(ProcessExecutionError):
        await executor.execute(
            PY, ["-c", _counting_script(tmp_path / "counter")], auto_retry=True
        )

    assert len(delays) == MAX_RETRIES - 1


@pytest.mark.asyncio
async def test_retry_stops_after_success(tmp_path: pathlib.Path):
    counter = tmp_path / "counter"
    executor, delays = _executor_with_recorded_sleep()

    res = await executor.execute(
        PY, ["-c", _counting_script(counter, succeed_on_attempt=3)], auto_retry=True
    )

    assert res.succeeded
    assert int(counter.read_text()) == 3
    assert delays == [1, 5]


@pytest.mark.asyncio
async def test_no_retry_without_auto_retry(tmp_path: pathlib.Path):
    counter = tmp_path / "counter"
    executor, delays = _executor_with_recorded_sleep()

    await executor.execute(PY, ["-c", _counting_script(counter)], ignore_errors=True)

    assert int(counter.read_text()) == 1
    assert delays == []


@pytest.mark.asyncio
async def test_timeout_aborts_retry_sequence(tmp_path: pathlib.Path):
    counter = tmp_path / "counter"
    executor = ProcessExecutor(wait_factor=100)

    with pytest.raises(TimeoutError):
        async with asyncio.timeout(5):
            await executor.execute(
                PY, ["-c", _counting_script(counter)], auto_retry=True
            )

    # the first retry waits 1 second, the second one 100 seconds
    assert int(counter.read_text()) == 2


@pytest.mark.asyncio
async def test_cancellation_kills_child_process():
    start = time.monotonic()

    with pytest.raises(TimeoutError):
        async with asyncio.timeout(0.5):
            await ProcessExecutor().execute(PY, ["-c", "import time; time.sleep(60)"])

    assert time.monotonic() - start < 30


@pytest.mark.asyncio
async def test_missing_executable_raises():
    with pytest.raises(FileNotFoundError):
        await ProcessExecutor().execute("this-command-does-not-exist-anywhere")


@pytest.mark.asyncio
async def test_over_long_line_is_captured():
    line_length = 2 * 2**20
    lines: list[str] = []

    res = await ProcessExecutor().execute(
        PY,
        ["-c", f"import sys; sys.stdout.write('x' * {line_length}); sys.exit(1)"],
        ignore_errors=True,
        observer=lines.append,
    )

    assert res.exit_code == 1
    assert res.stdout == "x" * line_length
    assert lines == [res.stdout]


@pytest.mark.asyncio
async def test_lines_split_across_reads_are_joined():
    script = (
        "import sys, time\n"
        "sys.stdout.write('first ha'); sys.stdout.flush(); time.sleep(0.2)\n"
        "sys.stdout.write('lf\\r\\nsecond\\n')\n"
    )
    lines: list[str] = []

    res = await ProcessExecutor().execute(PY, ["-c", script], observer=lines.append)

    assert lines == ["first half", "second"]
    assert res.stdout == "first half\nsecond"


@pytest.mark.asyncio
async def test_failing_observer_kills_child_process():
    pids: list[int] = []

    def _observer(line: str) -> None:
        pids.append(int(line))
        raise RuntimeError("observer failed")

    script = "import os, time; print(os.getpid(), flush=True); time.sleep(60)"
    start = time.monotonic()

    with pytest.raises(RuntimeError, match="observer failed"):
        await ProcessExecutor().execute(PY, ["-c", script], observer=_observer)

    assert time.monotonic() - start < 30
    # the child was killed and reaped
    with pytest.raises(ProcessLookupError):
        os.kill(pids[0], 0)


@pytest.mark.asyncio
async def test_input_is_written_to_stdin():
    res = await ProcessExecutor().execute(
        PY,
        ["-c", "import sys; print(sys.stdin.read().upper())"],
        input="secret token",
    )

    assert res.stdout == "SECRET TOKEN"


@pytest.mark.asyncio
async def test_input_is_not_logged(caplog: pytest.LogCaptureFixture):
    caplog.set_level("DEBUG", logger="dotnet_docker")

    await ProcessExecutor().execute_with_logging(
        PY, ["-c", "import sys; sys.stdin.read()"], input="hunter2"
    )

    assert "hunter2" not in caplog.text
