from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from droidagent.vlm import DEFAULT_BASE_URL, DEFAULT_MODEL, ChatClient


class ConfigError(RuntimeError):
    pass


@dataclass
class AgentSettings:
    max_steps: int = 100
    settle_delay_sec: float = 1.0
    post_action_delay_sec: float = 0.5
    gesture_timeout_sec: float = 10.0
    long_press_ms: int = 1000
    swipe_duration_ms: int = 500
    capture_attempts: int = 10
    capture_retry_delay_sec: float = 0.05
    jpeg_quality: int = 70
    screen_width: int | None = None
    screen_height: int | None = None
    save_debug_screenshot: bool = False
    capture_dir: Path = Path("captures")
    app_aliases: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_config(cls, agent_cfg: dict[str, Any], max_steps_override: int | None = None) -> AgentSettings:
        def _opt_int(key: str) -> int | None:
            value = agent_cfg.get(key)
            return int(value) if value is not None else None

        aliases = agent_cfg.get("app_aliases", {})
        if not isinstance(aliases, dict):
            raise ConfigError("agent.app_aliases must be an object of label -> package")

        max_steps = max_steps_override if max_steps_override is not None else agent_cfg.get("max_steps", 100)
        settings = cls(
            max_steps=int(max_steps),
            settle_delay_sec=float(agent_cfg.get("settle_delay_sec", 1.0)),
            post_action_delay_sec=float(agent_cfg.get("post_action_delay_sec", 0.5)),
            gesture_timeout_sec=float(agent_cfg.get("gesture_timeout_sec", 10.0)),
            long_press_ms=int(agent_cfg.get("long_press_ms", 1000)),
            swipe_duration_ms=int(agent_cfg.get("swipe_duration_ms", 500)),
            capture_attempts=int(agent_cfg.get("capture_attempts", 10)),
            capture_retry_delay_sec=float(agent_cfg.get("capture_retry_delay_sec", 0.05)),
            jpeg_quality=int(agent_cfg.get("jpeg_quality", 70)),
            screen_width=_opt_int("screen_width"),
            screen_height=_opt_int("screen_height"),
            save_debug_screenshot=bool(agent_cfg.get("save_debug_screenshot", False)),
            capture_dir=Path(agent_cfg.get("capture_dir", "captures")),
            app_aliases={str(k): str(v) for k, v in aliases.items()},
        )
        if settings.max_steps < 1:
            raise ConfigError(f"max_steps must be >= 1, got {settings.max_steps}")
        return settings


def load_config(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    try:
        config = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file is not valid JSON: {path}: {exc}") from exc
    if not isinstance(config, dict):
        raise ConfigError(f"Config root must be an object: {path}")
    return config


def build_chat_client(vlm_cfg: dict[str, Any]) -> ChatClient:
    if not vlm_cfg.get("api_key"):
        raise ConfigError("vlm.api_key is required")
    return ChatClient(
        base_url=vlm_cfg.get("base_url", DEFAULT_BASE_URL),
        api_key=vlm_cfg["api_key"],
        model=vlm_cfg.get("model", DEFAULT_MODEL),
        timeout_sec=int(vlm_cfg.get("timeout_sec", 120)),
        temperature=float(vlm_cfg.get("temperature", 0.0)),
        top_p=float(vlm_cfg.get("top_p", 0.85)),
        max_tokens=int(vlm_cfg.get("max_tokens", 3000)),
        extra_body=vlm_cfg.get("extra_body"),
    )
