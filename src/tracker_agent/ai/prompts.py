"""Prompt templates for AI context matching."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tracker_agent.backend.models import WorkItem


VISION_SYSTEM_PROMPT = """You analyze screenshots of a work computer for automatic time tracking.
You only report what is visibly on screen and always answer with a single JSON object."""


VISION_PROMPT_TEMPLATE = """Analyze this screenshot of a developer's work computer and determine which task they are working on.

CRITICAL RULES - NO HALLUCINATIONS:
1. Write ONLY what you SEE on screen.
2. Do not name a product, framework or site unless its name is visible.
3. Do not write a URL unless it is visible in an address bar.
4. detected_context = ONLY visible text (window title, URL in the address bar).

PROCESS:
1. Read visible text: window titles, address bar URLs, file names, editor content.
2. Describe what you see, not which task it might be.
3. Compare with the tasks below.
4. Return JSON:

{{
  "task_id": "123" or null,
  "confidence": 0.85,
  "summary": "What you see - editing Python code, browsing a website, reading email (max 60 chars)",
  "detected_context": "Main application or URL (max 50 chars)",
  "best_match_task_name": "Candidate name" or null,
  "best_match_confidence": 0.45 or null
}}

SUMMARY vs BEST MATCH:
- "summary" describes the ACTIVITY ("Editing main.py in VS Code", "Reading email").
- "best_match_task_name" is the task name that matches the activity.
- Never copy the task name into summary.

CONFIDENCE:
- > 0.8: clear match, return task_id
- 0.3-0.8: uncertain, task_id null, fill best_match fields
- < 0.3: no match, optional fields null

CONTEXT MUST BE STABLE:
- GOOD: "app.freelo.io"
- GOOD: "Visual Studio Code"
- BAD: "app.freelo.io, Freelo API, Python, debugging..."
Write only the main application or URL.
{consistency_hint}

Tasks:
{tasks}"""


CONSISTENCY_HINT_TEMPLATE = """
CONSISTENCY HINT:
The previous application was: "{previous}"
If the screen looks similar, use the SAME application name."""


TEXT_MATCH_PROMPT_TEMPLATE = """Analyze the following OCR text captured from the user's screen and choose the best matching task.

OCR TEXT (what the user sees):
```
{ocr_text}
```

AVAILABLE TASKS:
```
{tasks}
```

INSTRUCTIONS:
1. Work out what the user is doing from the OCR text.
2. Pick the task that best fits that activity.
3. If no task fits, return task_id: null.
4. confidence is 0-100 (how sure you are).
5. ALWAYS write a short activity description (max 100 chars) in activity_description.
{consistency_hint}
Answer ONLY with JSON in this format (no markdown):
{{
  "task_id": 123,
  "confidence": 85,
  "reasoning": "The user is working on...",
  "activity_description": "Editing code in tracker-agent-app"
}}"""


def format_consistency_hint(previous_label: str | None) -> str:
    if not previous_label:
        return ""
    return CONSISTENCY_HINT_TEMPLATE.format(previous=previous_label)


def format_vision_prompt(items: list[WorkItem], previous_label: str | None = None) -> str:
    """Build the screenshot classification prompt."""
    tasks = [
        f"ID: {item.id}, Project: {item.project_name}, Name: {item.name}" for item in items
    ]
    return VISION_PROMPT_TEMPLATE.format(
        consistency_hint=format_consistency_hint(previous_label),
        tasks=json.dumps(tasks, ensure_ascii=False),
    )


def format_text_match_prompt(
    ocr_text: str,
    items: list[WorkItem],
    char_limit: int = 3000,
    previous_label: str | None = None,
) -> str:
    """Build the OCR-text matching prompt."""
    tasks = "\n".join(
        f"ID: {item.id}, Name: {item.name}, Project: {item.project_name}" for item in items
    )
    return TEXT_MATCH_PROMPT_TEMPLATE.format(
        ocr_text=ocr_text[:char_limit],
        tasks=tasks,
        consistency_hint=format_consistency_hint(previous_label),
    )
