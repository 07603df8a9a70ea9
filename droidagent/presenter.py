from __future__ import annotations

from abc import ABC, abstractmethod


class Presenter(ABC):
    """Outbound notifications to whatever shows the run to a person."""

    @abstractmethod
    def log_line(self, text: str) -> None:
        pass

    @abstractmethod
    def show_completion(self, task: str, message: str) -> None:
        pass


class ConsolePresenter(Presenter):
    def log_line(self, text: str) -> None:
        print(text, flush=True)

    def show_completion(self, task: str, message: str) -> None:
        print(f"[finish] task={task!r} result={message}", flush=True)
