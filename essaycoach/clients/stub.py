from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
from typing import TypeVar

from essaycoach.domain.dto import VendorRequest, VendorResponse
from essaycoach.domain.models import TokenUsage

T = TypeVar("T")

DEFAULT_FEEDBACK_REPLY: dict[str, object] = {
    "scoreTR": 6.5,
    "scoreCC": 6,
    "scoreLR": "6.5 points",
    "scoreGRA": 6,
    "feedbackTR": "The position is clear and every part of the question is addressed.",
    "feedbackCC": "Paragraphs follow a logical order, though linking words repeat.",
    "feedbackLR": "Vocabulary is adequate with some less common items used well.",
    "feedbackGRA": "A mix of simple and complex sentences with occasional slips.",
    "overallFeedback": "A competent answer; develop examples further to reach a higher band.",
}
DEFAULT_EXAMPLE_REPLY: dict[str, object] = {
    "exampleEssay": "Many people argue that technology isolates us.\n\nHowever, it also connects distant families.",
    "improvement": "Open with a direct answer and support each claim with one concrete example.",
}


def _default_reply(request: VendorRequest) -> str:
    system = request.system_prompt.lower()
    if "annotate" in system:
        first_words = " ".join(_paragraph_line(request.user_prompt).split()[:3])
        return json.dumps(
            [
                {
                    "type": "suggestion",
                    "original_content": first_words,
                    "correction_content": None,
                    "suggestion": "Consider a more precise opening.",
                }
            ]
        )
    if "model answer" in system or "model essay" in system:
        return json.dumps(DEFAULT_EXAMPLE_REPLY)
    return json.dumps(DEFAULT_FEEDBACK_REPLY)


@dataclass
class StubVendorClient:
    """Deterministic vendor used when no API key is configured and in tests.

    ``replies`` are consumed first-match by a substring of the user prompt;
    ``failures`` raise the mapped exception for matching prompts.
    """

    replies: dict[str, str] = field(default_factory=dict)
    failures: dict[str, Exception] = field(default_factory=dict)
    delays: dict[str, float] = field(default_factory=dict)
    calls: list[VendorRequest] = field(default_factory=list)

    async def complete(self, request: VendorRequest) -> VendorResponse:
        self.calls.append(request)
        delay = _match(self.delays, request.user_prompt)
        if delay:
            await asyncio.sleep(delay)
        failure = _match(self.failures, request.user_prompt)
        if failure is not None:
            raise failure
        content = _match(self.replies, request.user_prompt)
        if content is None:
            content = _default_reply(request)
        prompt_tokens = len(request.system_prompt.split()) + len(request.user_prompt.split())
        completion_tokens = len(content.split())
        return VendorResponse(
            content=content,
            token_usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            latency_ms=int((delay or 0) * 1000),
            raw_text=content,
        )


def _match(table: dict[str, T], prompt: str) -> T | None:
    for needle, value in table.items():
        if needle in prompt:
            return value
    return None


def _paragraph_line(user_prompt: str) -> str:
    lines = user_prompt.splitlines()
    for index, line in enumerate(lines[:-1]):
        if line.startswith("Paragraph "):
            return lines[index + 1]
    return user_prompt
