"""Task runners: execute one prompt against a model CLI.

The runner is the only place a model is invoked. It reports the output text
along with token usage and cost so services can charge the spend to a budget
key.
"""

import asyncio
import json
import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class RunnerError(RuntimeError):
    """The model command failed, timed out or produced unusable output."""


@dataclass
class RunResult:
    output: str
    cost: float = 0.0
    session_id: str | None = None
    tokens_input: int = 0
    tokens_output: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.tokens_input + self.tokens_output


class TaskRunner(Protocol):
    async def run(
        self,
        prompt: str,
        model: str,
        working_dir: Path | None = None,
        max_turns: int | None = None,
    ) -> RunResult: ...


def _normalize_command(command: list[str] | str) -> list[str]:
    if isinstance(command, str):
        parts = shlex.split(command)
    else:
        parts = [str(item).strip() for item in command if str(item).strip()]
    if not parts:
        raise ValueError("runner command is required")
    return parts


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    """Kill a child that is still running and reap it."""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


def parse_run_output(text: str) -> RunResult:
    """Parse the JSON result object printed by the model CLI.

    Expected shape::

        {"result": "...", "session_id": "...", "total_cost_usd": 0.01,
         "is_error": false, "usage": {"input_tokens": 10, "output_tokens": 5}}

    Non-JSON output is taken as plain text with no usage information.
    """
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return RunResult(output=text.strip())
    if not isinstance(parsed, dict):
        return RunResult(output=text.strip())

    if parsed.get("is_error"):
        raise RunnerError(str(parsed.get("result") or "model command reported an error"))

    usage = parsed.get("usage") if isinstance(parsed.get("usage"), dict) else {}
    try:
        cost = float(parsed.get("total_cost_usd") or parsed.get("cost_usd") or 0.0)
    except (TypeError, ValueError):
        cost = 0.0
    return RunResult(
        output=str(parsed.get("result") or ""),
        cost=cost,
        session_id=parsed.get("session_id"),
        tokens_input=_as_int(usage.get("input_tokens")),
        tokens_output=_as_int(usage.get("output_tokens")),
        cache_creation_tokens=_as_int(usage.get("cache_creation_input_tokens")),
        cache_read_tokens=_as_int(usage.get("cache_read_input_tokens")),
    )


class SubprocessTaskRunner:
    """Runs prompts through a model CLI subprocess.

    The prompt is passed as ``--model <model> -p <prompt>`` after the
    configured command; stdout must carry a JSON result object.
    """

    def __init__(
        self,
        command: list[str] | str,
        working_dir: Path,
        timeout_seconds: float | None = None,
    ) -> None:
        self._command = _normalize_command(command)
        self._working_dir = working_dir
        self._timeout_seconds = timeout_seconds

    async def run(
        self,
        prompt: str,
        model: str,
        working_dir: Path | None = None,
        max_turns: int | None = None,
    ) -> RunResult:
        cwd = working_dir or self._working_dir
        await asyncio.to_thread(cwd.mkdir, parents=True, exist_ok=True)

        args = [*self._command, "--model", model]
        if max_turns:
            args.extend(["--max-turns", str(max_turns)])
        args.extend(["-p", prompt])

        logger.debug(
            "runner_started",
            extra={"runner.command": self._command[0], "runner.model": model},
        )
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise RunnerError(f"runner command not found: {self._command[0]}") from None

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self._timeout_seconds
            )
        except TimeoutError:
            await _terminate(proc)
            raise RunnerError(
                f"runner timed out after {self._timeout_seconds}s"
            ) from None
        except asyncio.CancelledError:
            await _terminate(proc)
            raise

        if proc.returncode != 0:
            stderr_text = stderr.decode("utf-8", errors="replace").strip()
            raise RunnerError(
                f"runner failed with exit {proc.returncode}: {stderr_text}"
                if stderr_text
                else f"runner failed with exit {proc.returncode}"
            )

        result = parse_run_output(stdout.decode("utf-8", errors="replace"))
        logger.debug(
            "runner_completed",
            extra={
                "runner.model": model,
                "runner.tokens": result.total_tokens,
                "runner.cost": result.cost,
            },
        )
        return result
