from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

from droidagent.adb import AdbClient, AdbDevice, AdbFrameSource
from droidagent.agent import AgentLoop, AgentOutcome
from droidagent.capture import CapturePipeline
from droidagent.config import AgentSettings, build_chat_client, load_config
from droidagent.presenter import ConsolePresenter, Presenter


def exit_code_for(outcome: AgentOutcome | None) -> int:
    if outcome is None:
        return 1
    if outcome.finished:
        return 0
    if outcome.reason == "step_limit":
        return 2
    return 1


def run_agent(
    config: dict[str, Any],
    task: str,
    max_steps_override: int | None,
    presenter: Presenter | None = None,
) -> int:
    presenter = presenter or ConsolePresenter()
    adb_cfg = config.get("adb", {})
    settings = AgentSettings.from_config(config.get("agent", {}), max_steps_override)
    chat_client = build_chat_client(config.get("vlm", {}))

    client = AdbClient(
        adb_path=str(adb_cfg.get("adb_path", "adb")),
        serial=adb_cfg.get("serial"),
        timeout_sec=int(adb_cfg.get("timeout_sec", 20)),
    )
    device = AdbDevice(client, app_aliases=settings.app_aliases, log=presenter.log_line)
    source = AdbFrameSource(client, log=presenter.log_line)
    try:
        source.open()
        if settings.screen_width and settings.screen_height:
            screen_size = (settings.screen_width, settings.screen_height)
        else:
            screen_size = client.screen_size()
        capture = CapturePipeline(
            source,
            screen_width=screen_size[0],
            screen_height=screen_size[1],
            attempts=settings.capture_attempts,
            retry_delay_sec=settings.capture_retry_delay_sec,
            jpeg_quality=settings.jpeg_quality,
            capture_dir=settings.capture_dir if settings.save_debug_screenshot else None,
            log=presenter.log_line,
        )
        loop = AgentLoop(chat_client, capture, device, presenter, settings, screen_size)
        presenter.log_line(f"[agent] device={client.serial or 'default'} model={chat_client.model}")

        thread = loop.start(task)
        try:
            while thread.is_alive():
                thread.join(0.5)
        except KeyboardInterrupt:
            presenter.log_line("[agent] stop requested, waiting for current step")
            loop.stop()
            thread.join()
        return exit_code_for(loop.outcome)
    finally:
        source.close()
        device.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Screenshot-driven VLM agent for Android devices over ADB")
    parser.add_argument("--task", required=True, help="Task instruction for the agent")
    parser.add_argument("--config", default="droidagent_config.json", help="Path to config JSON")
    parser.add_argument("--max-steps", type=int, default=None, help="Override agent.max_steps")
    args = parser.parse_args()

    try:
        config = load_config(Path(args.config))
        return run_agent(config, args.task, args.max_steps)
    except Exception as exc:  # noqa: BLE001
        print(f"[fatal] {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
