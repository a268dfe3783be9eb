# core/tasks.py
"""
Logical generation tasks.

A task fixes the request shape (one-shot or streaming, structured schema,
long-form model) but not the prompt text, which callers supply.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from core.exceptions import CancellationError, GatewayError

logger = logging.getLogger(__name__)


class TaskKind(str, Enum):
    PREMISE = "premise"
    OUTLINE = "outline"
    CHARACTERS = "characters"
    CHAPTER = "chapter"
    CONTINUATION = "continuation"
    SUMMARY = "summary"
    CONSISTENCY = "consistency"


OUTLINE_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "id": {"type": "integer", "description": "Chapter number, starting from 1"},
            "title": {"type": "string", "description": "Creative chapter title"},
            "summary": {"type": "string", "description": "Detailed summary of the chapter events"},
        },
        "required": ["id", "title", "summary"],
    },
}

CHARACTERS_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "role": {"type": "string"},
            "description": {"type": "string"},
            "relationships": {"type": "string"},
        },
        "required": ["name", "role", "description", "relationships"],
    },
}


@dataclass(frozen=True)
class TaskSpec:
    kind: TaskKind
    streaming: bool = False
    schema: Optional[Dict[str, Any]] = None
    long_form: bool = False
    system_instruction: Optional[str] = None
    empty_default: Optional[str] = None

    @property
    def structured(self) -> bool:
        return self.schema is not None


TASKS: Dict[TaskKind, TaskSpec] = {
    TaskKind.PREMISE: TaskSpec(
        TaskKind.PREMISE,
        system_instruction="You are a helpful creative writing assistant.",
    ),
    TaskKind.OUTLINE: TaskSpec(
        TaskKind.OUTLINE,
        schema=OUTLINE_SCHEMA,
        system_instruction="You are an expert novelist and editor specializing in plotting best-selling fiction.",
    ),
    TaskKind.CHARACTERS: TaskSpec(
        TaskKind.CHARACTERS,
        schema=CHARACTERS_SCHEMA,
        system_instruction="You are a character designer.",
    ),
    TaskKind.CHAPTER: TaskSpec(
        TaskKind.CHAPTER,
        streaming=True,
        long_form=True,
        system_instruction=(
            "You are a best-selling author known for a unique, authentic, and highly "
            "personal writing style. You despise generic, robotic writing."
        ),
    ),
    TaskKind.CONTINUATION: TaskSpec(
        TaskKind.CONTINUATION,
        streaming=True,
        system_instruction="You are a co-author and editor known for authentic human-like writing.",
    ),
    TaskKind.SUMMARY: TaskSpec(
        TaskKind.SUMMARY,
        system_instruction="You are an expert editor.",
        empty_default="",
    ),
    TaskKind.CONSISTENCY: TaskSpec(
        TaskKind.CONSISTENCY,
        system_instruction="You are a continuity editor.",
        empty_default="Consistent",
    ),
}


def get_task(task) -> TaskSpec:
    """Look up a task by kind or name."""
    try:
        return TASKS[TaskKind(task)]
    except ValueError:
        raise ValueError(f"Unknown task: {task!r}") from None


async def degrade(call: Callable[[], Awaitable[Any]], fallback: Any, *, task: str = "") -> Any:
    """
    Caller-side policy for secondary tasks (summaries, consistency checks):
    return `fallback` instead of failing. Cancellation is still propagated.
    """
    try:
        return await call()
    except CancellationError:
        raise
    except GatewayError as e:
        logger.warning(
            "Secondary task failed, using fallback",
            extra={"event": "task_degraded", "task": task, "error_type": type(e).__name__, "error_message": str(e)},
        )
        return fallback
