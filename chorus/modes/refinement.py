"""Collaborative refinement: answer, refine, then summarize.

Three rounds, each started only after every response of the previous round
has settled:

1. initial: every candidate answers the user
2. refinement: every candidate revises its answer after seeing the others,
   at 0.8x the turn temperature
3. summary: the first candidate synthesizes a final answer
"""

from __future__ import annotations

from chorus.modes.base import ModeType, ResponseSlot, Round, TurnRequest
from chorus.modes.discuss import DiscussPolicy


REFINEMENT_PROMPT = (
    "Please refine your previous response based on the other perspectives you can see."
)
SUMMARY_PROMPT = (
    "Please provide a comprehensive summary that synthesizes all the responses "
    "and refinements into a final, authoritative answer."
)
REFINEMENT_TEMPERATURE_FACTOR = 0.8

_PHASE_INSTRUCTIONS = {
    "initial": """COLLABORATIVE REFINEMENT - INITIAL RESPONSE PHASE:
You are participating in a collaborative refinement discussion. This is the INITIAL response phase.
- Provide your best analysis and response to the user's question
- Be thorough but concise
- You will have a chance to refine your response after seeing other perspectives
- Focus on your unique insights and expertise""",
    "refinement": """COLLABORATIVE REFINEMENT - REFINEMENT PHASE:
You are participating in a collaborative refinement discussion. This is the REFINEMENT phase.
- Review the other models' initial responses that you can see in the conversation
- Refine and improve your previous response by incorporating insights from others
- Address any gaps or disagreements you notice
- If you disagree, respectfully explain your different viewpoint""",
    "summary": """COLLABORATIVE REFINEMENT - SUMMARY PHASE:
You are the designated summarizer for this collaborative refinement discussion.
- Review ALL the initial responses and refinements from all models
- Create a comprehensive, well-structured final answer that synthesizes the best insights
- Resolve any conflicts or disagreements between the responses
- Ensure the summary is more valuable than any individual response""",
}


def phase_system_prompt(base_prompt: str, phase: str) -> str:
    instructions = _PHASE_INSTRUCTIONS.get(phase)
    if instructions is None:
        return base_prompt
    return f"{base_prompt}\n\n{instructions}"


class CollaborativeRefinementPolicy(DiscussPolicy):
    """Discuss visibility over three barrier-gated rounds."""

    mode = ModeType.COLLABORATIVE_REFINEMENT
    description = "Models answer, refine after seeing each other, then one summarizes"

    def plan_rounds(self, turn: TurnRequest) -> list[Round]:
        candidates = list(turn.candidates)
        if not candidates:
            return []
        return [
            Round(name="initial", slots=self._phase_slots("initial", candidates, turn)),
            Round(
                name="refinement",
                slots=self._phase_slots(
                    "refinement",
                    candidates,
                    turn,
                    temperature=turn.temperature * REFINEMENT_TEMPERATURE_FACTOR,
                    prompt=REFINEMENT_PROMPT,
                ),
            ),
            Round(
                name="summary",
                slots=self._phase_slots("summary", candidates[:1], turn, prompt=SUMMARY_PROMPT),
            ),
        ]

    def _phase_slots(
        self,
        phase: str,
        model_ids: list[str],
        turn: TurnRequest,
        temperature: float | None = None,
        prompt: str | None = None,
    ) -> list[ResponseSlot]:
        slots = self._slots(model_ids, turn, temperature=temperature, prompt=prompt)
        for slot in slots:
            slot.system_prompt = phase_system_prompt(turn.system_prompt, phase)
        return slots
