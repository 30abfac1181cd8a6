"""Prompt construction for code explanations."""
from __future__ import annotations

from dataclasses import dataclass


SYSTEM_TEMPLATE = (
    "You are an expert full-stack developer specializing in {language}. "
    "Your task is to explain the user's {language} code/query. "
    "Respond in clear, concise, and structured markdown. "
    'Do NOT include any conversational preamble ("Hello!", "Sure, I can explain that"). '
    "Just start with the explanation."
)

USER_TEMPLATE = "EXPLAIN THIS: \n\n```{language}\n{code}\n```"


@dataclass(frozen=True)
class Prompt:
    system: str
    user: str


def build_prompt(source_text: str, language: str) -> Prompt:
    """
    Render the explanation prompt for one snippet.

    Args:
        source_text: Code or question to explain.
        language: Language tag, also used as the fence label.
    """
    return Prompt(
        system=SYSTEM_TEMPLATE.format(language=language),
        user=USER_TEMPLATE.format(language=language, code=source_text),
    )
