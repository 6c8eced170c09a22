from __future__ import annotations

import json
import re
from typing import Any, Mapping, Sequence

from ..engine.models import Recommendation
from ..engine.trace import TraceStep

MAX_PROFILE_KEYS = 20
MAX_LIST_ITEMS = 10
MAX_STRING_LENGTH = 200

SYSTEM_PROMPT = (
    "You are a professional career guidance counselor. You MUST:\n"
    "1. Provide learning recommendations based ONLY on the provided user profile "
    "and base recommendations\n"
    "2. Structure responses in the exact JSON format requested\n"
    "3. Never suggest illegal, harmful, or inappropriate content\n"
    "4. Focus on legitimate learning resources and career paths\n"
    "5. Keep responses professional, helpful, and actionable\n"
    "6. Do not invent information not present in the input context"
)

_SECTION_HINTS = {
    "prioritySkills": "3-5 key skills as a bulleted list",
    "learningResources": "4-6 specific resources as a bulleted list",
    "practiceProjects": "2-4 hands-on projects as a bulleted list",
    "timeline": "weekly breakdown for the first 8-12 weeks",
    "whyThisPath": "2-3 sentence explanation of the recommendation logic",
    "assumptions": "key assumptions made about the user's goals",
}

_SCRIPT_RE = re.compile(r"<script\b[^>]*>(.*?)</script>", re.IGNORECASE | re.DOTALL)
_JS_PROTOCOL_RE = re.compile(r"javascript:", re.IGNORECASE)
_HANDLER_RE = re.compile(r"on\w+\s*=", re.IGNORECASE)
_MARKUP_RE = re.compile(r"[<>{}]")


def sanitize_string(value: Any, max_length: int = MAX_STRING_LENGTH) -> str:
    """Strip markup and template characters, then cap the length."""
    if value is None:
        return ""
    text = str(value).strip()[:max_length]
    text = _SCRIPT_RE.sub(r"\1", text)
    text = _JS_PROTOCOL_RE.sub("", text)
    text = _HANDLER_RE.sub("", text)
    text = _MARKUP_RE.sub("", text)
    return text.strip()


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_sanitize_value(v) for v in list(value)[:MAX_LIST_ITEMS]]
        return [v for v in items if not isinstance(v, (list, dict))]
    if isinstance(value, Mapping):
        # Nested objects are flattened to text
        return sanitize_string(json.dumps(value, default=str))
    return sanitize_string(value)


def sanitize_profile(profile: Mapping[str, Any] | None) -> dict[str, Any]:
    if not isinstance(profile, Mapping):
        return {}
    cleaned: dict[str, Any] = {}
    for key, value in list(profile.items())[:MAX_PROFILE_KEYS]:
        name = sanitize_string(key, 50)
        if name:
            cleaned[name] = _sanitize_value(value)
    return cleaned


def enforce_context_limit(prompt: str, max_length: int) -> str:
    """Cap ``prompt`` at ``max_length``, cutting back to the last full sentence."""
    if len(prompt) <= max_length:
        return prompt
    truncated = prompt[:max_length]
    last_sentence = truncated.rfind(".")
    return truncated[: last_sentence + 1] if last_sentence >= 10 else truncated


def _format_profile(profile: Mapping[str, Any]) -> list[str]:
    if not profile:
        return ["- Not specified"]
    lines = []
    for key, value in profile.items():
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value) or "none"
        lines.append(f"- {key}: {value}")
    return lines


def build_refinement_messages(
    recommendation: Recommendation,
    trace: Sequence[TraceStep],
    profile: Mapping[str, Any],
    domain_name: str | None,
    sections: Sequence[str],
    max_length: int,
) -> list[dict[str, str]]:
    applied = [sanitize_string(step.rule_name, 100) for step in trace if step.matched][:MAX_LIST_ITEMS]

    lines = [
        "Please refine this learning recommendation into a comprehensive roadmap.",
        "",
        "## User Profile",
        f"- Domain: {sanitize_string(domain_name, 50) or 'Not specified'}",
        *_format_profile(profile),
        "",
        "## Base Recommendations",
        f"Skills: {', '.join(recommendation.skills[:10]) or 'none'}",
        f"Resources: {', '.join(recommendation.resources[:8]) or 'none'}",
        f"Projects: {', '.join(recommendation.projects[:5]) or 'none'}",
    ]
    if recommendation.warnings:
        lines.append(f"Warnings: {'; '.join(recommendation.warnings[:5])}")
    lines += [
        "",
        "## Inference Details",
        f"Rules applied: {len(applied)} of {len(trace)} evaluated"
        + (f" ({', '.join(applied)})" if applied else ""),
        "",
        "## Required Output Format",
        "Return ONLY a JSON object with exactly these string fields:",
    ]
    for section in sections:
        lines.append(f'- "{section}": {_SECTION_HINTS.get(section, "detailed guidance")}')
    lines += [
        "",
        "Enhance the base recommendations with specific details and actionable steps. "
        "Focus on practical, achievable goals.",
    ]

    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": enforce_context_limit("\n".join(lines), max_length)},
    ]


def build_clarification_messages(
    question: str,
    profile: Mapping[str, Any],
    domain_name: str | None,
    roadmap: Mapping[str, str] | None,
    recommendation: Recommendation | None,
    max_length: int,
) -> list[dict[str, str]]:
    lines = [
        "You are helping to clarify questions about a personalized learning roadmap. "
        "Answer ONLY based on the provided recommendation data.",
        "",
        "## User Profile",
        f"- Domain: {sanitize_string(domain_name, 50) or 'Not specified'}",
        *_format_profile(profile),
        "",
        "## Recommended Roadmap",
    ]
    if roadmap:
        for section, text in roadmap.items():
            lines.append(f"{section}: {sanitize_string(text, 600)}")
    elif recommendation is not None:
        lines.append(f"Skills: {', '.join(recommendation.skills) or 'none'}")
        lines.append(f"Resources: {', '.join(recommendation.resources) or 'none'}")
        lines.append(f"Projects: {', '.join(recommendation.projects) or 'none'}")
    else:
        lines.append("Not available")
    lines += [
        "",
        f'## User Question\n"{question}"',
        "",
        "## Instructions",
        "- Give a helpful, specific answer based ONLY on the roadmap above",
        "- If the question is about something not in the roadmap, say so",
        "- Keep the answer to 2-3 sentences",
        "- Do not suggest new skills, resources or timeline changes",
    ]

    # The question goes last, so a plain length cap would cut it first
    body = "\n".join(lines)
    if len(body) > max_length:
        head, _, tail = body.partition("\n\n## User Question")
        tail = "\n\n## User Question" + tail
        body = enforce_context_limit(head, max(max_length - len(tail), 0)) + tail

    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": body},
    ]
