"""
Prompt construction for page-aware questions.
"""

from typing import Dict, List, Optional

from src.types.history import QueryContext

SYSTEM_PROMPT = (
    "You are PeekAI, a helpful AI assistant that provides accurate, contextual "
    "answers to questions about web content. Be concise but thorough, and format "
    "your responses clearly with markdown when appropriate."
)

SURROUNDING_TEXT_LIMIT = 500


def build_contextual_prompt(question: str, context: Optional[QueryContext] = None) -> str:
    """
    Combine a question with the page context it was asked on.

    Parts are added in a fixed order and only when present. The page URL is
    never included. With no parts the question is returned unchanged.
    """
    if context is None:
        return question

    parts: List[str] = []
    if context.page_title:
        parts.append(f"Page: {context.page_title}")
    if context.page_domain:
        parts.append(f"Domain: {context.page_domain}")
    if context.selected_text:
        parts.append(f'Selected text: "{context.selected_text}"')
    if context.surrounding_text:
        parts.append(f"Context: {context.surrounding_text[:SURROUNDING_TEXT_LIMIT]}...")

    if not parts:
        return question

    return "Context:\n" + "\n".join(parts) + "\n\nQuestion: " + question


def build_messages(question: str, context: Optional[QueryContext] = None) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_contextual_prompt(question, context)},
    ]
