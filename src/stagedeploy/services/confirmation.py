"""Interactive confirmation checkpoints between stages."""

from typing import Callable, Optional

from rich.markup import escape

from stagedeploy.constants import AFFIRMATIVE_ANSWERS
from stagedeploy.models import ConfirmationGate


class ConfirmationService:
    """Resolves confirmation gates, failing closed on anything but an explicit yes."""

    def __init__(self, logger, console, input_func: Optional[Callable[[str], str]] = None):
        self.logger = logger
        self.console = console
        self.input_func = input_func or console.input

    def confirm(self, prompt: str, auto_approve: bool = False) -> ConfirmationGate:
        gate = ConfirmationGate(prompt=prompt)

        if auto_approve:
            self.logger.debug("Auto-approved: %s", prompt)
            gate.approved = True
            gate.resolved = True
            return gate

        try:
            answer = self.input_func(f"[yellow]{escape(prompt)}[/yellow] {escape('[y/N]')}: ")
        except EOFError:
            answer = ""

        gate.approved = self.is_affirmative(answer)
        gate.resolved = True
        self.logger.debug("Confirmation %r resolved to %s", prompt, gate.approved)
        return gate

    @staticmethod
    def is_affirmative(answer: Optional[str]) -> bool:
        if answer is None:
            return False
        return answer.strip().lower() in AFFIRMATIVE_ANSWERS
