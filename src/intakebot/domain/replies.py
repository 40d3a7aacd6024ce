"""Reply policy: what the candidate sees after an agent turn.

The agent may end a turn on a tool call without any closing text. The
candidate must still get an answer, so the reply is chosen from an explicit
table keyed by the last tool the agent ran.
"""

import re
from typing import Callable

from intakebot.agent.gateway import AgentReply, ToolResult

SUBMIT_TOOL = "submit-candidate-application"
LOOKUP_TOOL = "lookup-candidate"

MAX_MESSAGE_LENGTH = 4000

NO_RESULT_REPLY = (
    "I've noted that. Is there anything else you'd like to add, "
    "or shall we continue with your application?"
)
DEFAULT_TOOL_REPLY = (
    "I've processed that. Is there anything else you'd like to add, "
    "or shall we continue with your application?"
)
EMPTY_REPLY = "I apologize, I was unable to generate a response. Please try again."


def _by_flag(flag: str, when_true: str, when_false: str) -> Callable[[ToolResult], str]:
    def pick(result: ToolResult) -> str:
        return when_true if result.result_field(flag) else when_false

    return pick


def _fixed(text: str) -> Callable[[ToolResult], str]:
    return lambda _result: text


# tool id -> reply builder
FALLBACK_REPLIES: dict[str, Callable[[ToolResult], str]] = {
    LOOKUP_TOOL: _by_flag(
        "found",
        "I've checked our records. How can I help you today?",
        "I don't see an existing application. Let's start a new one!",
    ),
    SUBMIT_TOOL: _by_flag(
        "success",
        "Thank you! Your application has been submitted. "
        "Our team will review it and get back to you soon.",
        "I've noted your information. Is there anything else you'd like to add?",
    ),
    "check-requirements": _fixed(
        "I've checked the requirements for you. Do you have any questions about them?"
    ),
    "schedule-callback": _fixed(
        "I've scheduled a callback for you. A recruiter will contact you soon."
    ),
}


def fallback_reply(reply: AgentReply) -> str:
    """Reply for a turn that produced no text at all."""
    if reply.tool_results:
        last = reply.tool_results[-1]
        builder = FALLBACK_REPLIES.get(last.tool_name)
        return builder(last) if builder else DEFAULT_TOOL_REPLY
    if reply.tool_calls:
        return NO_RESULT_REPLY
    return EMPTY_REPLY


def resolve_reply_text(reply: AgentReply) -> str:
    """Final reply text: agent text, then recovered text, then the fallback table."""
    text = reply.text.strip()
    if text:
        return text
    return reply.recovered_text() or fallback_reply(reply)


_BOLD = re.compile(r"\*\*([^*]+)\*\*")
_ITALIC = re.compile(r"\*([^*]+)\*")


def strip_markup(text: str) -> str:
    """Remove **bold** and *italic* markers the channels would show literally."""
    return _ITALIC.sub(r"\1", _BOLD.sub(r"\1", text))


def split_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into chunks of at most max_length characters.

    Break preference: paragraph break, line break, space. A paragraph or line
    break in the first half of the window is ignored in favor of the next
    option; with no usable break the text is cut hard at max_length.
    """
    chunks: list[str] = []
    remaining = text
    half = max_length / 2

    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break

        window = remaining[: max_length + 1]
        cut = window.rfind("\n\n")
        if cut == -1 or cut < half:
            cut = window.rfind("\n")
        if cut == -1 or cut < half:
            cut = window.rfind(" ")
        if cut <= 0:
            cut = max_length

        chunks.append(remaining[:cut])
        remaining = remaining[cut:].strip()

    return chunks
