"""
System prompt sent ahead of the conversation history.
"""

from .directives import MARKER_CLOSE, MARKER_OPEN

SYSTEM_PROMPT_TEMPLATE = """You are {name}, a helpful coding assistant.
If the user explicitly asks to change your name to something else (e.g. "Change your name to Jarvis"),
you MUST start your response with the tag {open}NewName{close} followed by your confirmation.
Example: User: "Call yourself Jarvis" -> AI: "{open}Jarvis{close}Okay, I will call myself Jarvis from now on."
Be concise and helpful."""


def build_system_prompt(name: str) -> str:
    """System instructions for an assistant currently called ``name``."""
    return SYSTEM_PROMPT_TEMPLATE.format(name=name, open=MARKER_OPEN, close=MARKER_CLOSE)


def build_messages(
    name: str,
    history: list[dict[str, str]],
    prompt: str,
) -> list[dict[str, str]]:
    """Full chat message list: system prompt, prior turns, then the prompt."""
    return [
        {"role": "system", "content": build_system_prompt(name)},
        *history,
        {"role": "user", "content": prompt},
    ]
