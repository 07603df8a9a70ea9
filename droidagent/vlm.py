from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Any

DEFAULT_BASE_URL = "https://open.bigmodel.cn/api/paas/v4"
DEFAULT_MODEL = "autoglm-phone"


class ModelError(RuntimeError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _chat_url(base_url: str) -> str:
    base = base_url.rstrip("/")
    if base.endswith("/chat/completions"):
        return base
    return f"{base}/chat/completions"


class ChatClient:
    """OpenAI-compatible chat completions client for the phone model."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str = DEFAULT_MODEL,
        timeout_sec: int = 120,
        temperature: float = 0.0,
        top_p: float = 0.85,
        max_tokens: int = 3000,
        extra_body: dict[str, Any] | None = None,
    ) -> None:
        self.url = _chat_url(base_url)
        self.api_key = api_key
        self.model = model
        self.timeout_sec = timeout_sec
        self.temperature = temperature
        self.top_p = top_p
        self.max_tokens = max_tokens
        self.extra_body = extra_body if isinstance(extra_body, dict) else {}

    def build_payload(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
        }
        if self.extra_body:
            payload.update(self.extra_body)
        return payload

    def chat(self, messages: list[dict[str, Any]]) -> str:
        req = urllib.request.Request(
            url=self.url,
            data=json.dumps(self.build_payload(messages), ensure_ascii=False).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.api_key}",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_sec) as resp:
                body = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace")
            raise ModelError(f"VLM HTTP {exc.code}: {body}", status=exc.code) from exc
        except (urllib.error.URLError, TimeoutError) as exc:
            raise ModelError(f"VLM request failed: {exc}") from exc

        try:
            obj = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ModelError(f"VLM response parse error: {exc}") from exc
        choices = obj.get("choices", []) if isinstance(obj, dict) else []
        first_choice = choices[0] if isinstance(choices, list) and choices else {}
        if not isinstance(first_choice, dict):
            first_choice = {}
        message = first_choice.get("message", {})
        content = message.get("content", "") if isinstance(message, dict) else ""
        if isinstance(content, list):
            texts = []
            for item in content:
                if isinstance(item, dict) and str(item.get("type", "")) in ("text", "output_text"):
                    texts.append(str(item.get("text", item.get("content", ""))))
            return "\n".join(texts).strip()
        if content is None:
            return ""
        return str(content).strip()
