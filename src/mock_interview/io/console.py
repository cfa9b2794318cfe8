"""
Terminal front end.

Renders the transcript, recruiter state and errors of a `VoiceSession` and
reads typed answers and commands from stdin.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from mock_interview.events import ErrorRaised, MessageAppended, RecruiterStateChanged
from mock_interview.orchestrator.schemas import (
    InterviewParams,
    InterviewReport,
    RecruiterState,
    Speaker,
    TurnStatus,
)
from mock_interview.voice.voice_session import VoiceSession

COMMANDS = {
    "/pause": "pause the interview",
    "/resume": "resume the interview",
    "/retry": "re-send the last failed answer",
    "/end": "end the interview and show the report",
    "/help": "show this help",
}


class ConsoleInterface:
    """
    Command-line interface for an interview session.

    Everything typed that is not a command is submitted as the candidate's answer.
    """

    def __init__(
        self,
        session: VoiceSession,
        params: InterviewParams,
        *,
        write: Callable[[str], None] = print,
    ) -> None:
        """
        Initialize the console interface.

        Args:
            session: Session to drive.
            params: Interview parameters for start().
            write: Output function.
        """
        self._session = session
        self._params = params
        self._write = write

        bus = session.bus
        bus.subscribe(MessageAppended, self._on_message)
        bus.subscribe(ErrorRaised, self._on_error)
        bus.subscribe(RecruiterStateChanged, self._on_recruiter_state)

    async def run(self) -> InterviewReport:
        """Run the interview until /end or end of input."""
        self._write("\n" + "=" * 60)
        self._write(
            f"Mock interview: {self._params.role} ({self._params.level}), "
            f"{self._params.interview_type}, {self._params.language}"
        )
        self._write("Type your answers. Commands: " + ", ".join(COMMANDS))
        self._write("=" * 60 + "\n")

        await self._session.start(self._params)
        await self._session.wait_idle()

        while True:
            line = (await self._get_input("You: ")).strip()
            if not line:
                continue
            if line.startswith("/"):
                if not await self._handle_command(line.lower()):
                    break
                continue

            self._session.submit_text(line)
            await self._session.wait_idle()

        report = await self._session.end()
        self._display_report(report)
        return report

    async def _handle_command(self, command: str) -> bool:
        """Run a command. Returns False when the loop should stop."""
        if command == "/end":
            return False
        if command == "/pause":
            self._session.pause()
            self._write("[paused]")
        elif command == "/resume":
            self._session.resume()
            self._write("[resumed]")
        elif command == "/retry":
            outcome = await self._session.retry()
            if outcome is None:
                self._write("[nothing to retry]")
            elif outcome.status == TurnStatus.DENIED and outcome.denial is not None:
                self._write(f"[retry not sent: {outcome.denial.value.replace('_', ' ')}]")
        else:
            for name, help_text in COMMANDS.items():
                self._write(f"  {name:<8} {help_text}")
        return True

    async def _get_input(self, prompt: str) -> str:
        try:
            return await asyncio.to_thread(input, prompt)
        except EOFError:
            return "/end"

    def _on_message(self, event: MessageAppended) -> None:
        if event.message.speaker == Speaker.RECRUITER:
            self._write(f"\nRecruiter: {event.message.text}\n")

    def _on_error(self, event: ErrorRaised) -> None:
        banner = event.banner
        line = f"[error] {banner.code}: {banner.message}"
        if banner.hint:
            line += f" ({banner.hint})"
        self._write(line)

    def _on_recruiter_state(self, event: RecruiterStateChanged) -> None:
        if event.current == RecruiterState.THINKING:
            self._write("[recruiter is thinking...]")

    def _display_report(self, report: InterviewReport) -> None:
        scores = report.scores
        minutes, seconds = divmod(report.duration_sec, 60)
        self._write("\n" + "=" * 60)
        self._write("Interview report")
        self._write("=" * 60)
        self._write(f"Duration: {minutes:02d}:{seconds:02d}   Messages: {len(report.messages)}")
        if scores.total is None:
            self._write("No scored answers.")
        else:
            self._write(f"Overall:         {scores.total:.1f}")
            self._write(f"Technical:       {scores.technical:.1f}")
            self._write(f"Communication:   {scores.communication:.1f}")
            self._write(f"Problem solving: {scores.problem_solving:.1f}")
        if report.signals:
            self._write("Signals: " + ", ".join(report.signals))
        self._write("")
