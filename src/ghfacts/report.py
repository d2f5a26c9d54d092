"""Key/value fact report rendering."""

import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Self

from ghfacts.errors import GhFactsError
from ghfacts.statistics import format_number

KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")

ActionResult = Literal["success", "failed", "skipped"]
FileOperation = Literal["created", "modified", "deleted", "read"]

_ACTION_RESULTS = ("success", "failed", "skipped")
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


def single_line(text: str) -> str:
    """Escape line breaks as a literal ``\\n`` so a value stays on its KEY=value line."""
    return _LINE_BREAK.sub(r"\\n", text)


def fact_value(value) -> str:
    """Render a value the way every fact is rendered.

    Booleans become ``true``/``false``, whole floats lose their ``.0``,
    datetimes use ISO 8601 and None becomes an empty string. Line breaks
    in text are escaped.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, float):
        return format_number(value)
    return single_line(str(value))


@dataclass(frozen=True)
class Action:
    event: str
    result: ActionResult
    details: str | None = None
    duration_ms: int | None = None


@dataclass(frozen=True)
class FileRecord:
    path: str
    operation: FileOperation
    size: int | None = None


class FactReport:
    """Accumulates facts, actions, files and instructions for one command.

    Rendered as plain ``KEY=value`` sections for a downstream reader. When
    an error is set the output switches to a failure block with recovery
    instructions, and the exit code becomes 1.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.actions: list[Action] = []
        self.files: list[FileRecord] = []
        self.instructions: list[str] = []
        self.error: GhFactsError | None = None

    def add_data(self, key: str, value) -> Self:
        """Set a fact.

        Raises:
            ValueError: If the key isn't ``UPPER_SNAKE_CASE``.
        """
        if not KEY_PATTERN.match(key):
            raise ValueError(
                f"Invalid key format: {key}. Must be UPPER_SNAKE_CASE (e.g., PROJECT_ID, USER_COUNT)"
            )
        self.data[key] = fact_value(value)
        return self

    def add_data_bulk(self, data: dict[str, object]) -> Self:
        """Add every entry of ``data`` with the same key validation as add_data."""
        for key, value in data.items():
            self.add_data(key, value)
        return self

    def add_action(
        self,
        event: str,
        result: ActionResult,
        details: str | None = None,
        duration_ms: int | None = None,
    ) -> Self:
        """Record a step in the action log.

        Args:
            event: What was done.
            result: ``success``, ``failed`` or ``skipped``.
            details: Optional short description.
            duration_ms: How long the step took.

        Raises:
            ValueError: If ``result`` is not a known outcome.
        """
        if result not in _ACTION_RESULTS:
            raise ValueError(f"Invalid action result: {result}")
        self.actions.append(Action(event, result, details, duration_ms))
        return self

    def add_file(self, path: str, operation: FileOperation, size: int | None = None) -> Self:
        """Record a file the command created, modified or deleted."""
        self.files.append(FileRecord(str(path), operation, size))
        return self

    def add_instruction(self, instruction: str) -> Self:
        self.instructions.append(instruction)
        return self

    def set_error(self, error: GhFactsError) -> Self:
        self.error = error
        return self

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def exit_code(self) -> int:
        return 1 if self.error else 0

    def merge(self, other: "FactReport") -> Self:
        """Fold another report into this one.

        An error in ``other`` replaces this report's error and nothing else
        is merged.
        """
        if other.error is not None:
            return self.set_error(other.error)
        self.actions.extend(other.actions)
        self.data.update(other.data)
        self.files.extend(other.files)
        self.instructions.extend(other.instructions)
        return self

    def render(self) -> str:
        """Render the report as the plain-text KEY=value layout.

        Returns:
            The success layout, or the failure layout when an error is set.
        """
        return self._render_error() if self.error else self._render_success()

    __str__ = render

    def _render_success(self) -> str:
        return "".join(
            [
                "=== EXECUTION SUMMARY ===\nEXECUTION_STATUS=SUCCESS\n\n",
                self._action_log(),
                self._file_operations(),
                self._data_section(),
                self._instructions(),
            ]
        )

    def _render_error(self) -> str:
        error = self.error
        lines = [
            "================== COMMAND EXECUTION FAILED ==================\n",
            "STOP PROCESSING - DO NOT CONTINUE WITH OPERATION\n",
            "==============================================================\n\n",
            "=== ERROR DETAILS ===\n",
            f"ERROR_TYPE={type(error).__name__}\n",
            f"ERROR_MESSAGE={single_line(error.message)}\n",
            f"ERROR_TIMESTAMP={error.timestamp.isoformat()}\n",
        ]
        if error.context:
            lines.append("\n=== ERROR CONTEXT ===\n")
            for key, value in error.context.items():
                lines.append(f"{key.upper()}={json.dumps(value, default=str)}\n")
        lines.append(self._data_section())
        lines.append(self._action_log())
        lines.append(self._file_operations())
        lines.append("\n=== RECOVERY INSTRUCTIONS ===\n")
        lines.extend(f"- {single_line(i)}\n" for i in error.recovery_instructions)
        return "".join(lines)

    def _action_log(self) -> str:
        if not self.actions:
            return ""
        lines = ["=== ACTION LOG ===\n"]
        for index, action in enumerate(self.actions):
            lines.append(f"ACTION_{index}_EVENT={action.event}\n")
            lines.append(f"ACTION_{index}_RESULT={action.result}\n")
            if action.details:
                lines.append(f"ACTION_{index}_DETAILS={single_line(action.details)}\n")
            if action.duration_ms is not None:
                lines.append(f"ACTION_{index}_DURATION_MS={action.duration_ms}\n")
        counts = {result: 0 for result in _ACTION_RESULTS}
        for action in self.actions:
            counts[action.result] += 1
        lines.append(f"TOTAL_ACTIONS={len(self.actions)}\n")
        lines.append(f"ACTIONS_SUCCEEDED={counts['success']}\n")
        lines.append(f"ACTIONS_FAILED={counts['failed']}\n")
        lines.append(f"ACTIONS_SKIPPED={counts['skipped']}\n\n")
        return "".join(lines)

    def _file_operations(self) -> str:
        if not self.files:
            return ""
        lines = ["=== FILES AFFECTED ===\n"]
        for index, record in enumerate(self.files):
            lines.append(f"FILE_{index}_PATH={record.path}\n")
            lines.append(f"FILE_{index}_OPERATION={record.operation}\n")
            if record.size is not None:
                lines.append(f"FILE_{index}_SIZE={record.size}\n")
        lines.append(f"TOTAL_FILES={len(self.files)}\n\n")
        return "".join(lines)

    def _data_section(self) -> str:
        if not self.data:
            return ""
        return "=== DATA ===\n" + "".join(f"{k}={v}\n" for k, v in self.data.items()) + "\n"

    def _instructions(self) -> str:
        if not self.instructions:
            return ""
        return "=== INSTRUCTIONS FOR LLM ===\n" + "".join(
            f"- {single_line(i)}\n" for i in self.instructions
        )
