"""Wire format of failure report issues.

A failure report is a GitHub issue whose title names the failed TaskRun and
whose body carries the pod log, a task-list checkbox and a hidden annotation::

    title: peribolos-run-ab3f9 failed

    Logs for `peribolos-run-ab3f9`:
    ```json
    <log>
    ```

    - [ ] Re-run this task

    <!-- peribolos-task-run: {"template": "peribolos-run", ...} -->

Ticking the checkbox turns the marker into ``- [x] Re-run this task``, which
the retry controller picks up. The title is the structural guard for the
retry; the annotation supplies the template and parameters of the original run.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from jinja2 import Environment, StrictUndefined

from peribolos.logging import get_logger
from peribolos.types import TaskTemplate

logger = get_logger(__name__)

RETRY_MARKER = "- [ ] Re-run this task"
RETRY_MARKER_ACTIVATED = "- [x] Re-run this task"

TITLE_SUFFIX = " failed"
ANNOTATION_KEY = "peribolos-task-run"

# Suffix appended by the API server to generateName
_TITLE_PATTERN = re.compile(
    r"^(?P<template>"
    + "|".join(re.escape(t) for t in sorted(TaskTemplate.values(), key=len, reverse=True))
    + r")-[a-z0-9]{5}"
    + re.escape(TITLE_SUFFIX)
    + r"$"
)
_ANNOTATION_PATTERN = re.compile(
    r"<!-- " + re.escape(ANNOTATION_KEY) + r": (?P<payload>\{.*?\}) -->",
    re.DOTALL,
)

_BODY_TEMPLATE = """\
Logs for `{{ task_run }}`:
```json
{{ log }}
```

{{ marker }}

<!-- {{ annotation_key }}: {{ annotation }} -->
"""

_environment = Environment(
    autoescape=False,
    keep_trailing_newline=True,
    undefined=StrictUndefined,
)
_body_template = _environment.from_string(_BODY_TEMPLATE)


@dataclass(frozen=True)
class TaskRunAnnotation:
    """Correlation data embedded in a failure report body."""

    template: TaskTemplate
    task_run: str
    installation_id: int | None = None
    parameters: dict[str, str] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize for embedding inside an HTML comment.

        ``--`` is escaped so the payload can never close the comment early.
        """
        payload: dict[str, Any] = {
            "template": self.template.value,
            "task_run": self.task_run,
            "installation_id": self.installation_id,
            "parameters": self.parameters,
        }
        return json.dumps(payload, sort_keys=True).replace("--", "\\u002d\\u002d")


@dataclass(frozen=True)
class ParsedTitle:
    """Template and TaskRun name recovered from a failure report title."""

    template: TaskTemplate
    task_run: str


def render_title(task_run_name: str) -> str:
    """Return the failure report title for a TaskRun."""
    return f"{task_run_name}{TITLE_SUFFIX}"


def parse_title(title: str) -> ParsedTitle | None:
    """Recover the template and TaskRun name from a failure report title.

    Args:
        title: Issue title.

    Returns:
        ParsedTitle, or None if the title is not a failure report title.
    """
    match = _TITLE_PATTERN.match(title)
    if match is None:
        return None
    return ParsedTitle(
        template=TaskTemplate(match.group("template")),
        task_run=title[: -len(TITLE_SUFFIX)],
    )


def truncate_log(log: str, limit: int) -> str:
    """Keep the last ``limit`` characters of a log, noting any truncation."""
    if len(log) <= limit:
        return log
    dropped = len(log) - limit
    return f"[... {dropped} earlier characters truncated ...]\n{log[-limit:]}"


def render_body(annotation: TaskRunAnnotation, log: str, log_limit: int | None = None) -> str:
    """Render the failure report body.

    Args:
        annotation: Correlation data of the failed run.
        log: Pod log of the failed run.
        log_limit: Optional maximum number of log characters to include.

    Returns:
        Markdown issue body.
    """
    excerpt = log if log_limit is None else truncate_log(log, log_limit)
    return _body_template.render(
        task_run=annotation.task_run,
        log=excerpt.rstrip("\n"),
        marker=RETRY_MARKER,
        annotation_key=ANNOTATION_KEY,
        annotation=annotation.to_json(),
    )


def is_retry_requested(body: str | None) -> bool:
    """Return True if the body contains the ticked retry checkbox."""
    return body is not None and RETRY_MARKER_ACTIVATED in body


def parse_annotation(body: str | None) -> TaskRunAnnotation | None:
    """Extract the correlation annotation from an issue body.

    Malformed annotations are logged and treated as absent.
    """
    if not body:
        return None
    match = _ANNOTATION_PATTERN.search(body)
    if match is None:
        return None
    try:
        payload = json.loads(match.group("payload"))
        template = TaskTemplate(payload["template"])
        parameters = payload.get("parameters") or {}
        if not isinstance(parameters, dict):
            raise ValueError("parameters must be an object")
        installation_id = payload.get("installation_id")
        return TaskRunAnnotation(
            template=template,
            task_run=str(payload["task_run"]),
            installation_id=int(installation_id) if installation_id is not None else None,
            parameters={str(k): str(v) for k, v in parameters.items()},
        )
    except (ValueError, KeyError, TypeError) as e:
        logger.warning("Ignoring malformed %s annotation: %s", ANNOTATION_KEY, e)
        return None


__all__ = [
    "RETRY_MARKER",
    "RETRY_MARKER_ACTIVATED",
    "ParsedTitle",
    "TaskRunAnnotation",
    "is_retry_requested",
    "parse_annotation",
    "parse_title",
    "render_body",
    "render_title",
    "truncate_log",
]
