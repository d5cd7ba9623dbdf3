"""
Structured documentation answers.

Defines the `Answer` value type returned by every search, the canned answers used for
early returns and failures, and `parse_answer`, which pulls a JSON answer out of the
free text an assistant replies with.

Reply text is searched for a JSON candidate in this order:
    1. a ```json fenced block
    2. a bare ``` fenced block
    3. the whole text
"""

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ._exceptions import ResponseParseError

__all__ = [
    "Answer",
    "ANSWER_FIELDS",
    "parse_answer",
    "extract_json_candidate",
    "not_configured_answer",
    "query_required_answer",
    "not_documented_answer",
    "unparseable_answer",
    "run_failed_answer",
]

ANSWER_FIELDS = ("signature", "parameters", "examples", "notes", "sources")

_TEXT_FIELDS = ANSWER_FIELDS[:-1]

_JSON_FENCE_RE = re.compile(r"```json\n(.*?)\n```", re.DOTALL)
_BARE_FENCE_RE = re.compile(r"```\n(.*?)\n```", re.DOTALL)

UNPARSEABLE_SIGNATURE = "Unable to parse search result"
RUN_FAILED_SIGNATURE = "Search failed"


@dataclass(frozen=True)
class Answer:
    """
    Structured answer to a documentation query.

    Attributes:
        signature (str): Function or module signature.
        parameters (str): Parameter descriptions.
        examples (str): Code examples.
        notes (str): Usage notes.
        sources (tuple[str, ...]): Source references in the documentation.
    """

    signature: str = ""
    parameters: str = ""
    examples: str = ""
    notes: str = ""
    sources: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-serializable wire form, with `sources` as a list."""
        data: dict[str, Any] = {name: getattr(self, name) for name in _TEXT_FIELDS}
        data["sources"] = list(self.sources)
        return data

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Answer":
        """
        Build an Answer from a decoded JSON object.

        Missing fields default to empty. Non-string text fields are JSON encoded so structured
        content returned by the model is preserved. A single string `sources` becomes a
        one-element tuple; non-string source entries are JSON encoded. Unknown keys are ignored.

        Args:
            data (Mapping[str, Any]): The decoded object.

        Returns:
            Answer: The normalized answer.
        """
        values: dict[str, Any] = {}
        for name in _TEXT_FIELDS:
            value = data.get(name)
            if value is None:
                values[name] = ""
            elif isinstance(value, str):
                values[name] = value
            else:
                values[name] = json.dumps(value)

        sources = data.get("sources")
        if sources is None:
            values["sources"] = ()
        elif isinstance(sources, str):
            values["sources"] = (sources,)
        elif isinstance(sources, (list, tuple)):
            values["sources"] = tuple(
                s if isinstance(s, str) else json.dumps(s) for s in sources
            )
        else:
            values["sources"] = (json.dumps(sources),)
        return cls(**values)


def extract_json_candidate(raw: str) -> str:
    """
    Return the part of an assistant reply that should hold the JSON answer.

    Args:
        raw (str): Reply text.

    Returns:
        str: The contents of the first ```json block, else of the first bare fenced block,
            else `raw` unchanged.
    """
    match = _JSON_FENCE_RE.search(raw) or _BARE_FENCE_RE.search(raw)
    if match and match.group(1):
        return match.group(1)
    return raw


def parse_answer(raw: str) -> Answer:
    """
    Parse assistant reply text into an Answer.

    Args:
        raw (str): Reply text, optionally wrapping the JSON in a fenced block.

    Returns:
        Answer: The parsed answer.

    Raises:
        ResponseParseError: If no JSON object can be decoded from the reply.

    Example:
        >>> parse_answer('```json\\n{"signature": "cuboid(size)"}\\n```').signature
        'cuboid(size)'
    """
    candidate = extract_json_candidate(raw)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Reply is not valid JSON: {e}", raw) from e
    if not isinstance(data, dict):
        raise ResponseParseError(
            f"Reply JSON must be an object, got {type(data).__name__}", raw
        )
    return Answer.from_mapping(data)


def not_configured_answer(env_var: str) -> Answer:
    """Answer returned when no vector store id is configured."""
    return Answer(
        signature="Vector store not configured",
        parameters=f"{env_var} environment variable is required",
        examples="",
        notes="Configure the vector store to enable documentation search",
    )


def query_required_answer() -> Answer:
    """Answer returned for an empty or whitespace-only query."""
    return Answer(signature="Query is required")


def not_documented_answer() -> Answer:
    """Answer returned when a completed run produced no assistant text."""
    return Answer(
        signature="Not documented",
        parameters="Not documented",
        examples="Not documented",
        notes="Not documented",
    )


def unparseable_answer(raw: str) -> Answer:
    """Fallback answer carrying the raw reply text verbatim in `parameters`."""
    return Answer(
        signature=UNPARSEABLE_SIGNATURE,
        parameters=raw,
        examples="",
        notes="Returned raw search response; validate manually.",
    )


def run_failed_answer(status: str) -> Answer:
    """Answer describing a run that ended in a non-completed terminal status."""
    return Answer(
        signature=RUN_FAILED_SIGNATURE,
        parameters=f"Documentation search ended with status: {status}",
        examples="",
        notes="Try refining the query or rerunning the search.",
    )
