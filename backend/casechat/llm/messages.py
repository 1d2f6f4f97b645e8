"""Utilities for handling chat history in dict and LangChain shapes.

History entries arrive from the UI as ``{"role": "user" | "model", "content": ...}``.
"""

from typing import Any, Iterable, List

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage


def message_content(message: Any) -> str:
    """Extract plain-text content from dict or LangChain message objects."""
    if isinstance(message, dict):
        content = message.get("content", "")
    elif isinstance(message, BaseMessage):
        content = message.content
    else:
        return str(message) if message is not None else ""

    if isinstance(content, str):
        return content
    if isinstance(content, list):
        # Multi-part content (e.g. Gemini): keep the text parts.
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return str(content)


def message_role(message: Any) -> str:
    """Infer a normalized role (``user``, ``assistant``, ``system``)."""
    if isinstance(message, dict):
        role = str(message.get("role", "user")).lower()
        return "assistant" if role in ("model", "assistant", "ai") else role

    if isinstance(message, AIMessage):
        return "assistant"
    if isinstance(message, HumanMessage):
        return "user"
    if isinstance(message, SystemMessage):
        return "system"

    return "user"


def to_langchain_messages(system_prompt: str, history: Iterable[Any], message: str) -> List[BaseMessage]:
    """Build the LangChain message list for one chat turn."""
    messages: List[BaseMessage] = [SystemMessage(content=system_prompt)]
    for entry in history:
        content = message_content(entry)
        if message_role(entry) == "assistant":
            messages.append(AIMessage(content=content))
        else:
            messages.append(HumanMessage(content=content))
    messages.append(HumanMessage(content=message))
    return messages


def to_anthropic_messages(history: Iterable[Any], message: str) -> list[dict[str, Any]]:
    """Build the Anthropic Messages API ``messages`` list for one chat turn."""
    messages = [
        {
            "role": "assistant" if message_role(entry) == "assistant" else "user",
            "content": [{"type": "text", "text": message_content(entry)}],
        }
        for entry in history
    ]
    messages.append({"role": "user", "content": [{"type": "text", "text": message}]})
    return messages
