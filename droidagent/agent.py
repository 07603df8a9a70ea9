"""
Agent loop: capture -> infer -> parse -> execute, one step at a time.

Every run ends in exactly one AgentOutcome. Finishing and running out of
steps are also reported through Presenter.show_completion; aborts are only
logged.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum

from droidagent.actions import ActionParseError, action_summary, parse_action, split_thinking_and_action
from droidagent.capture import CapturePipeline
from droidagent.config import AgentSettings
from droidagent.context import ConversationContext, assistant_turn, user_turn
from droidagent.device import DeviceCapabilities
from droidagent.executor import ActionExecutor
from droidagent.presenter import Presenter
from droidagent.prompts import build_screen_info, build_user_text, system_prompt
from droidagent.vlm import ChatClient, ModelError

STEP_LIMIT_MESSAGE = "Max steps reached without finish action"
STOPPED_MESSAGE = "Stopped by user"


class AgentState(Enum):
    INIT = "init"
    CAPTURING = "capturing"
    CAPTURE_FAILED = "capture_failed"
    INFERRING = "inferring"
    PARSING = "parsing"
    EXECUTING = "executing"
    FINISHED = "finished"
    ABORTED = "aborted"


@dataclass
class AgentOutcome:
    state: AgentState
    reason: str  # finish | step_limit | capture_failed | model_error | empty_reply | parse_error | cancelled | error
    message: str
    steps: int

    @property
    def finished(self) -> bool:
        return self.state is AgentState.FINISHED


class AgentLoop:
    def __init__(
        self,
        chat_client: ChatClient,
        capture: CapturePipeline,
        device: DeviceCapabilities,
        presenter: Presenter,
        settings: AgentSettings,
        screen_size: tuple[int, int],
        prompt: str | None = None,
    ) -> None:
        self.chat_client = chat_client
        self.capture = capture
        self.device = device
        self.presenter = presenter
        self.settings = settings
        self.screen_size = screen_size
        self.prompt = prompt if prompt is not None else system_prompt()
        self.stop_event = threading.Event()
        self.executor = ActionExecutor(
            device,
            stop_event=self.stop_event,
            long_press_ms=settings.long_press_ms,
            swipe_duration_ms=settings.swipe_duration_ms,
            gesture_timeout_sec=settings.gesture_timeout_sec,
            log=presenter.log_line,
        )
        self.state = AgentState.INIT
        self.context: ConversationContext | None = None
        self.outcome: AgentOutcome | None = None
        self._thread: threading.Thread | None = None

    def start(self, task: str) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("agent loop is already running")
        self.stop_event.clear()
        self.outcome = None
        self._thread = threading.Thread(
            target=self._run_in_background, args=(task,), name="droidagent-loop", daemon=True
        )
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        self.stop_event.set()

    def join(self, timeout: float | None = None) -> AgentOutcome | None:
        if self._thread is not None:
            self._thread.join(timeout)
        return self.outcome

    def _run_in_background(self, task: str) -> None:
        try:
            self.outcome = self.run(task)
        except Exception as exc:  # noqa: BLE001
            self.presenter.log_line(f"[fatal] {exc}")
            self.state = AgentState.ABORTED
            self.outcome = AgentOutcome(AgentState.ABORTED, "error", str(exc), 0)

    def _log(self, text: str) -> None:
        self.presenter.log_line(text)

    def _pause(self, seconds: float) -> bool:
        """Sleep unless stopped; False means a stop was requested."""
        return not self.stop_event.wait(seconds)

    def _abort(self, reason: str, message: str, steps: int) -> AgentOutcome:
        self.state = AgentState.ABORTED
        self._log(f"[abort] {message}")
        return AgentOutcome(AgentState.ABORTED, reason, message, steps)

    def run(self, task: str) -> AgentOutcome:
        width, height = self.screen_size
        self.state = AgentState.INIT
        self.context = ConversationContext(self.prompt)
        self._log(f"[agent] task={task}")
        self._log(f"[agent] screen={width}x{height} maxSteps={self.settings.max_steps}")
        outcome = self._run_steps(task, width, height)
        self._log(f"[agent] done state={outcome.state.value} reason={outcome.reason} steps={outcome.steps}")
        return outcome

    def _run_steps(self, task: str, width: int, height: int) -> AgentOutcome:
        context = self.context
        for step in range(1, self.settings.max_steps + 1):
            if self.stop_event.is_set():
                return self._abort("cancelled", STOPPED_MESSAGE, step - 1)
            self._log(f"\n[step {step}] ...")

            if not self._pause(self.settings.settle_delay_sec):
                return self._abort("cancelled", STOPPED_MESSAGE, step - 1)

            self.state = AgentState.CAPTURING
            frame_b64 = self.capture.capture_frame()
            if frame_b64 is None:
                self.state = AgentState.CAPTURE_FAILED
                return self._abort("capture_failed", "Failed to capture screen.", step)

            try:
                current_app = self.device.current_foreground_app()
            except Exception as exc:  # noqa: BLE001
                self._log(f"[step {step}] foreground app query failed: {exc}")
                current_app = "unknown"
            screen_info = build_screen_info(current_app)
            text = build_user_text(task, screen_info, first_step=(step == 1))

            self.state = AgentState.INFERRING
            context.append(user_turn(frame_b64, text))
            self._log(f"[step {step}] calling model app={current_app}")
            try:
                reply = self.chat_client.chat(context.to_payload())
            except ModelError as exc:
                return self._abort("model_error", str(exc), step)
            if self.stop_event.is_set():
                return self._abort("cancelled", STOPPED_MESSAGE, step)
            if not reply or (isinstance(reply, str) and not reply.strip()):
                return self._abort("empty_reply", "Empty response from API", step)

            self.state = AgentState.PARSING
            thinking, action_text = split_thinking_and_action(reply)
            if thinking:
                self._log(f"[step {step}] thinking: {thinking[:100]}...")
            self._log(f"[step {step}] action: {action_text}")
            try:
                action = parse_action(action_text)
            except ActionParseError as exc:
                return self._abort("parse_error", f"Parse Error: {exc}", step)

            context.strip_images_from_last_user_turn()
            context.append(assistant_turn(thinking, str(action_text)))

            self.state = AgentState.EXECUTING
            result = self.executor.execute(action, width, height)
            self._log(f"[exec] {action_summary(action)} ok={result.success}")
            if result.message is not None:
                self._log(f"[exec] result: {result.message}")

            if result.should_finish:
                self.state = AgentState.FINISHED
                message = result.message if result.message is not None else "Done"
                self._log(f"[finish] {message}")
                self.presenter.show_completion(task, message)
                return AgentOutcome(AgentState.FINISHED, "finish", message, step)

            if not self._pause(self.settings.post_action_delay_sec):
                return self._abort("cancelled", STOPPED_MESSAGE, step)

        self.state = AgentState.ABORTED
        self._log(f"[finish] {STEP_LIMIT_MESSAGE}")
        self.presenter.show_completion(task, STEP_LIMIT_MESSAGE)
        return AgentOutcome(AgentState.ABORTED, "step_limit", STEP_LIMIT_MESSAGE, self.settings.max_steps)
