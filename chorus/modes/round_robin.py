"""Round-robin mode: models answer one at a time, in candidate order."""

from __future__ import annotations

from typing import Sequence

from chorus.conversation.models import Message
from chorus.modes.base import (
    ModePolicy,
    ModeType,
    Round,
    TurnRequest,
    latest_user_index,
    sort_messages,
)


class RoundRobinPolicy(ModePolicy):
    """Sequential turn-taking.

    A respondent sees the history before the latest user message, the
    latest user message itself, and the replies of this turn that have
    already settled. Respondent k+1 starts only after k has reached a
    terminal state.
    """

    mode = ModeType.ROUND_ROBIN
    description = "Models take turns responding, each seeing the previous replies"

    def filter_messages(
        self,
        all_messages: Sequence[Message],
        responding_model_id: str,
        exclude_message_id: str | None = None,
    ) -> list[Message]:
        ordered = sort_messages(all_messages, exclude_message_id)
        cut = latest_user_index(ordered)
        if cut < 0:
            return [self.attribute(message) for message in ordered]

        visible = ordered[: cut + 1]
        visible.extend(
            message
            for message in ordered[cut + 1 :]
            if message.is_assistant and message.state.is_terminal
        )
        return [self.attribute(message) for message in visible]

    def select_respondents(
        self,
        all_messages: Sequence[Message],
        candidate_ids: Sequence[str],
    ) -> list[str]:
        """Candidates that have not settled a reply since the latest user message."""
        ordered = sort_messages(all_messages)
        cut = latest_user_index(ordered)
        answered = {
            message.model_id
            for message in ordered[cut + 1 :]
            if message.is_assistant and message.state.is_terminal
        }
        return [model_id for model_id in candidate_ids if model_id not in answered]

    def plan_rounds(self, turn: TurnRequest) -> list[Round]:
        respondents = self.select_respondents(turn.history, turn.candidates)
        return [
            Round(
                name=self.mode.value,
                slots=self._slots(respondents, turn),
                sequential=True,
            )
        ]
