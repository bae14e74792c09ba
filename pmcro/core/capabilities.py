"""Capability providers: the tool-call boundary used by the phase executor.

A provider answers ``invoke(tool_name, params)`` with a ``ToolResult``.
"Unavailable" is an ordinary result, not an exception path: the phase
executor checks ``result.ok`` and falls back to local estimation when it is
False. Providers may still raise ``ToolUnavailableError``; the executor
treats that the same way.
"""

import json
import shlex
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .exceptions import ToolUnavailableError


@dataclass
class ToolResult:
    """Outcome of a tool call."""

    ok: bool
    payload: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @classmethod
    def success(cls, payload: Dict[str, Any], duration_seconds: float = 0.0) -> "ToolResult":
        """Build a successful result."""
        return cls(ok=True, payload=payload, duration_seconds=duration_seconds)

    @classmethod
    def unavailable(cls, error: str, duration_seconds: float = 0.0) -> "ToolResult":
        """Build an unavailable result."""
        return cls(ok=False, error=error, duration_seconds=duration_seconds)


class CapabilityProvider:
    """Base class for tool-call providers."""

    def invoke(self, tool_name: str, params: Dict[str, Any]) -> ToolResult:
        """Invoke a named tool.

        Args:
            tool_name: Tool to call
            params: Tool parameters

        Returns:
            ToolResult with the structured payload or the unavailability reason
        """
        raise NotImplementedError


class NullCapabilityProvider(CapabilityProvider):
    """Provider with no tools; every phase runs on its local fallback."""

    def invoke(self, tool_name: str, params: Dict[str, Any]) -> ToolResult:
        return ToolResult.unavailable(f"No capability provider configured for {tool_name}")


class LocalToolRegistry(CapabilityProvider):
    """In-process provider backed by registered Python callables."""

    def __init__(self) -> None:
        self._tools: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {}

    def register(
        self, tool_name: str, handler: Callable[[Dict[str, Any]], Dict[str, Any]]
    ) -> None:
        """Register a handler for a tool name."""
        self._tools[tool_name] = handler

    def unregister(self, tool_name: str) -> None:
        """Remove a tool, if registered."""
        self._tools.pop(tool_name, None)

    def has_tool(self, tool_name: str) -> bool:
        """Check if a tool is registered."""
        return tool_name in self._tools

    def invoke(self, tool_name: str, params: Dict[str, Any]) -> ToolResult:
        handler = self._tools.get(tool_name)
        if handler is None:
            return ToolResult.unavailable(f"Tool not registered: {tool_name}")

        start_time = time.time()
        try:
            payload = handler(params)
        except ToolUnavailableError as e:
            return ToolResult.unavailable(str(e), time.time() - start_time)

        if not isinstance(payload, dict):
            return ToolResult.unavailable(
                f"Tool {tool_name} returned {type(payload).__name__}, expected an object",
                time.time() - start_time,
            )
        return ToolResult.success(payload, time.time() - start_time)


class CommandCapabilityProvider(CapabilityProvider):
    """Run an external command per tool call.

    The command is invoked as ``<command> <tool_name>`` with the parameters as
    a JSON object on stdin, and must print a JSON object on stdout. Anything
    else (missing executable, non-zero exit, timeout, unparsable output)
    is reported as unavailable.
    """

    def __init__(
        self,
        command: str,
        working_dir: Optional[Path] = None,
        default_timeout: int = 120,
    ):
        """Initialize command provider.

        Args:
            command: Command line to run (e.g., "pmcro-tools --json")
            working_dir: Working directory for command execution
            default_timeout: Timeout in seconds per tool call
        """
        self.command = command
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.default_timeout = default_timeout

    def invoke(self, tool_name: str, params: Dict[str, Any]) -> ToolResult:
        cmd = shlex.split(self.command) + [tool_name]
        start_time = time.time()

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(self.working_dir),
                text=True,
            )
        except FileNotFoundError:
            return ToolResult.unavailable(
                f"Tool command not found: {self.command}", time.time() - start_time
            )
        except OSError as e:
            return ToolResult.unavailable(
                f"Failed to start tool command: {e}", time.time() - start_time
            )

        try:
            stdout, stderr = process.communicate(
                input=json.dumps(params, default=str), timeout=self.default_timeout
            )
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
            return ToolResult.unavailable(
                f"Tool {tool_name} timed out after {self.default_timeout}s",
                time.time() - start_time,
            )

        duration = time.time() - start_time
        if process.returncode != 0:
            message = f"Tool {tool_name} exited with code {process.returncode}"
            if stderr:
                message += f": {stderr.strip()[:500]}"
            return ToolResult.unavailable(message, duration)

        payload = _parse_json_object(stdout)
        if payload is None:
            return ToolResult.unavailable(
                f"Tool {tool_name} produced no JSON object", duration
            )
        return ToolResult.success(payload, duration)


def _parse_json_object(output: str) -> Optional[Dict[str, Any]]:
    """Extract a JSON object from command output.

    Accepts the whole output as JSON, or falls back to the span between the
    first ``{`` and the last ``}``.
    """
    if not output or not output.strip():
        return None

    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        start = output.find("{")
        end = output.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(output[start : end + 1])
        except json.JSONDecodeError:
            return None

    return data if isinstance(data, dict) else None
