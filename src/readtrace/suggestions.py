"""Reading-goal suggestions from an LLM, with a deterministic offline mode.

Set ``MOCK_LLM=1`` to run without network access or an API key.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from .config import Settings, get_settings
from .models import Purpose, ReadingGoal, ReadingSuggestion, ReadtraceError

logger = logging.getLogger(__name__)

READING_GOAL_SYSTEM_PROMPT = (
    "You are an expert research methodology advisor and academic mentor. "
    "Your purpose is to help researchers read academic papers more effectively "
    "by generating a set of specific, actionable reading goals."
)

READING_GOAL_GENERATE_PROMPT = """\
You will be provided with (1) the full text of an academic paper and (2) a list of reading goals that the user has already completed.

Your task is to:
(1) first understand the paper,
(2) then assess the user's current reading progress using Keshav's "three-pass approach",
(3) finally generate three potential reading goals and their descriptions according to the following framework, the goals' levels should depend on the user's current reading progress on Keshav's three-pass approach.

Keshav's "three-pass approach":
- a quick first pass (i.e. skimming) to get a bird's-eye view,
- a second pass to grasp content, and
- a third for in-depth understanding.

Framework for Goal Generation:
- Level 1: Foundational Understanding (What does the paper say?)
-- To Learn / Self-Inform: [1-2 specific goals for this paper related to learning its core concepts and background.]
-- To Search / Answer Questions: [1-2 specific questions a reader might want to find the answer to in this paper.]
-- To Summarize: [a goal focused on summarizing the paper's central argument and conclusion.]

- Level 2: Critical Evaluation (How good is the paper's argument?)
-- For Critical Review: [1-2 goals focused on critically evaluating this paper's specific methodology, evidence, or logical structure.]
-- For Discussion: [a goal aimed at forming a critical opinion or a key question for discussing this paper with peers.]

- Level 3: Connection & Application (How can I use this paper?)
-- To Apply: [a goal related to extracting a specific method, theory, or finding from this paper for practical application.]
-- To Write and Revise: [a goal focused on how a researcher could use this paper to support their own writing or literature review.]
-- For Decision Making: [a goal about using the paper's findings to inform a specific research or practical decision.]

Ensure all generated goals are phrased as actionable tasks and are tailored directly to the content of the paper.

Respond with a JSON object of the form
{"readingProgress": "<assessment>", "readingGoals": [{"goalName": "...", "goalDescription": "..."}]}

The user has already completed the following reading goals:
"""

_MOCK_PASSES = ("first pass", "second pass", "third pass")


class SuggestionError(ReadtraceError):
    """Raised when the suggestion service fails or returns an unusable payload."""


def completed_goals_text(purposes: Iterable[Purpose]) -> str:
    return "\n".join(f"{purpose.title}: {purpose.description or ''}" for purpose in purposes)


def build_reading_goal_prompt(completed_purposes: Iterable[Purpose], document_text: str) -> str:
    """User prompt: instructions, completed goals, then the full document text."""

    return (
        READING_GOAL_GENERATE_PROMPT
        + "\n\n"
        + completed_goals_text(completed_purposes)
        + "\n\nBelow is the full text of the paper:\n"
        + document_text
    )


def _goal_from(item: Any) -> ReadingGoal:
    if not isinstance(item, dict):
        raise SuggestionError(f"Reading goal must be an object, got {type(item).__name__}")
    name = item.get("goalName")
    if not isinstance(name, str) or not name.strip():
        raise SuggestionError("Reading goal is missing goalName")
    return ReadingGoal(goal_name=name.strip(), goal_description=str(item.get("goalDescription", "")).strip())


def parse_suggestion(raw: str) -> ReadingSuggestion:
    """Validate a model response.

    Accepts the object form with ``readingProgress``/``readingGoals`` as well
    as a bare list of goals.
    """

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SuggestionError(f"Suggestion is not valid JSON: {exc}") from exc

    if isinstance(payload, list):
        progress, goals = "", payload
    elif isinstance(payload, dict):
        progress = str(payload.get("readingProgress", ""))
        goals = payload.get("readingGoals", [])
    else:
        raise SuggestionError("Suggestion must be a JSON object or list")
    if not isinstance(goals, list):
        raise SuggestionError("readingGoals must be a list")
    return ReadingSuggestion(reading_progress=progress, reading_goals=tuple(_goal_from(item) for item in goals))


def extract_document_text(pdf_bytes: bytes) -> str:
    """Plain text of every page of a PDF, in page order."""

    import fitz  # type: ignore

    try:
        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            return "\n".join(page.get_text() for page in doc)
    except RuntimeError as exc:
        raise SuggestionError(f"Cannot read document text: {exc}") from exc


@dataclass
class SuggestionClient:
    """Thin wrapper over chat completions in JSON mode."""

    settings: Settings = field(default_factory=get_settings)

    def _mock(self, prompt: str, document_text: str) -> str:
        completed = prompt.split("The user has already completed the following reading goals:", 1)[-1]
        completed = completed.split("Below is the full text of the paper:", 1)[0]
        done = sum(1 for line in completed.splitlines() if line.strip())
        stage = _MOCK_PASSES[min(done, len(_MOCK_PASSES) - 1)]
        words = document_text.split()
        topic = " ".join(words[:6]) if words else "the document"
        return json.dumps(
            {
                "readingProgress": f"The reader is ready for the {stage}.",
                "readingGoals": [
                    {"goalName": "Summarize", "goalDescription": f"Summarize the central argument of {topic}."},
                    {"goalName": "Critical Review", "goalDescription": "Evaluate the evidence behind the main claim."},
                    {"goalName": "Apply", "goalDescription": "Pick one method worth reusing in your own work."},
                ],
            }
        )

    def complete(self, prompt: str, document_text: str) -> str:
        if self.settings.mock_llm:
            return self._mock(prompt, document_text)

        if not self.settings.openai_api_key:
            raise SuggestionError("OPENAI_API_KEY is not set. Set it or run with MOCK_LLM=1")

        from openai import OpenAI, OpenAIError

        client = OpenAI(api_key=self.settings.openai_api_key)
        try:
            response = client.chat.completions.create(
                model=self.settings.openai_model,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": READING_GOAL_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )
        except OpenAIError as exc:
            raise SuggestionError(f"Suggestion request failed: {exc}") from exc
        return response.choices[0].message.content or ""

    def suggest(self, prompt: str, document_text: str = "") -> ReadingSuggestion:
        suggestion = parse_suggestion(self.complete(prompt, document_text))
        logger.info("Received %d reading goals", len(suggestion.reading_goals))
        return suggestion


__all__ = [
    "READING_GOAL_GENERATE_PROMPT",
    "READING_GOAL_SYSTEM_PROMPT",
    "SuggestionClient",
    "SuggestionError",
    "build_reading_goal_prompt",
    "extract_document_text",
    "parse_suggestion",
]
