from typing import Iterable, List

from .models import ROLE_ASSISTANT, ROLE_USER, Message


TITLE_MAX_CHARS = 50
ELLIPSIS = "..."

_ROLE_LABELS = {
    ROLE_USER: "User",
    ROLE_ASSISTANT: "Assistant",
}


def render_turns(history: Iterable[Message]) -> List[str]:
    """Render stored messages as `User: ...` / `Assistant: ...` lines.

    Rows with any other role are dropped.
    """
    lines: List[str] = []
    for msg in history:
        label = _ROLE_LABELS.get(msg.role)
        if label:
            lines.append(f"{label}: {msg.content}")
    return lines


def build_context(history: List[Message], prompt: str) -> str:
    """Assemble the completion input for a new prompt.

    With no prior messages the prompt is sent unchanged. Otherwise the prior
    turns are wrapped with the current message and a reminder to keep context.
    No token counting happens here; the caller bounds history by row count.
    """
    if not history:
        return prompt
    previous = "\n".join(render_turns(history))
    return (
        f"Previous conversation:\n{previous}\n\n"
        f"Current message:\n{prompt}\n\n"
        "Please respond remembering our previous conversation and maintain context."
    )


def provisional_title(prompt: str) -> str:
    # Used at creation time, before the first turn completes
    return prompt[:TITLE_MAX_CHARS] + ELLIPSIS


def final_title(prompt: str) -> str:
    if len(prompt) > TITLE_MAX_CHARS:
        return prompt[:TITLE_MAX_CHARS] + ELLIPSIS
    return prompt
