"""
Prompt history for one agent run.

At most one message holds image data at any time: the most recent user
turn, and only while the model call that needs it is in flight.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    url: str

    @classmethod
    def from_jpeg_base64(cls, image_b64: str) -> ImagePart:
        return cls(url=f"data:image/jpeg;base64,{image_b64}")


ContentPart = Union[TextPart, ImagePart]


@dataclass(frozen=True)
class Message:
    role: str  # "system" | "user" | "assistant"
    content: str | tuple[ContentPart, ...]

    @property
    def has_image(self) -> bool:
        return not isinstance(self.content, str) and any(isinstance(p, ImagePart) for p in self.content)

    def without_images(self) -> Message:
        if isinstance(self.content, str):
            return self
        return Message(self.role, tuple(p for p in self.content if isinstance(p, TextPart)))

    def to_payload(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        parts: list[dict[str, Any]] = []
        for part in self.content:
            if isinstance(part, ImagePart):
                parts.append({"type": "image_url", "image_url": {"url": part.url}})
            else:
                parts.append({"type": "text", "text": part.text})
        return {"role": self.role, "content": parts}


def user_turn(image_b64: str, text: str) -> Message:
    return Message("user", (ImagePart.from_jpeg_base64(image_b64), TextPart(text)))


def assistant_turn(thinking: str, action_text: str) -> Message:
    return Message("assistant", f"<think>{thinking}</think><answer>{action_text}</answer>")


class ConversationContext:
    def __init__(self, system_prompt: str) -> None:
        self._messages: list[Message] = [Message("system", system_prompt)]

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, message: Message) -> None:
        if message.role == "user":
            # Earlier turns must never keep a frame alive.
            self._messages = [
                m.without_images() if m.role == "user" else m for m in self._messages
            ]
        self._messages.append(message)

    def strip_images_from_last_user_turn(self) -> None:
        for i in range(len(self._messages) - 1, -1, -1):
            if self._messages[i].role == "user":
                self._messages[i] = self._messages[i].without_images()
                return

    def snapshot(self) -> list[Message]:
        return list(self._messages)

    def to_payload(self) -> list[dict[str, Any]]:
        return [m.to_payload() for m in self._messages]

    def image_message_count(self) -> int:
        return sum(1 for m in self._messages if m.has_image)
