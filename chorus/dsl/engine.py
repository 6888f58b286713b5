"""DSLPhaseEngine - executes a validated DSL conversation for one turn.

Per phase, in order:
    1. resolve the ``models`` selector against the turn's candidates
    2. bind the ``context`` visibility rule (with the previous phase's ids)
    3. build each respondent's system prompt (global prompt, banner, role)
    4. launch the respondents through the orchestrator's RoundLauncher
    5. record the produced ids under the phase name
    6. wait on the barrier when ``wait_for_completion`` and not the last phase

A failing respondent never aborts the phase or later phases; its failure is
encoded in its own message.
"""

from __future__ import annotations

import random
from typing import Sequence

from chorus.conversation.models import Message
from chorus.conversation.registry import ModelRegistry
from chorus.core.logging import get_logger
from chorus.dsl.models import ContextMode, DSLConversation, DSLPhase, ExecutionContext, ModelSelector
from chorus.modes.base import (
    MessageFilter,
    ResponseSlot,
    Round,
    RoundLauncher,
    TurnRequest,
    attribute_message,
    sort_messages,
)


logger = get_logger(__name__)


class DSLPhaseEngine:
    """Runs the phases of a ``DSLConversation``.

    Example:
        >>> engine = DSLPhaseEngine(example_dsl(), registry)
        >>> context = await engine.run(turn, launcher)
        >>> context.phase_results["Initial Response"]
        ['msg_1700000000001_gpt', 'msg_1700000000002_claude']
    """

    def __init__(
        self,
        dsl: DSLConversation,
        registry: ModelRegistry | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.dsl = dsl
        self.registry = registry or ModelRegistry()
        self._rng = rng or random.Random()
        self._candidates: list[str] = []

    # =========================================================================
    # Selection
    # =========================================================================

    def resolve_models(self, selector: str, candidates: Sequence[str]) -> list[str]:
        """Map a selector onto the candidate list."""
        candidates = list(candidates)
        return [candidates[index] for index in self.resolve_positions(selector, candidates)]

    def resolve_positions(self, selector: str, candidates: Sequence[str]) -> list[int]:
        """Candidate positions picked by a selector.

        Index lists are 1-based; out-of-range indices are dropped. Unknown
        selectors fall back to every candidate.
        """
        count = len(candidates)
        if not count:
            return []

        spec = selector.strip()
        if spec == ModelSelector.ALL.value:
            return list(range(count))
        if spec == ModelSelector.FIRST.value:
            return [0]
        if spec == ModelSelector.LAST.value:
            return [count - 1]
        if spec == ModelSelector.RANDOM.value:
            return [self._rng.randrange(count)]

        parts = [part.strip() for part in spec.split(",")]
        if parts and all(part.isdigit() for part in parts):
            return [int(part) - 1 for part in parts if 0 < int(part) <= count]

        logger.warning("Unknown model selector, using all models", selector=selector)
        return list(range(count))

    # =========================================================================
    # Roles and prompts
    # =========================================================================

    def role_for(self, respondent_index: int, phase: DSLPhase) -> str | None:
        """Phase roles win over global roles; keys are 0-based indices."""
        key = str(respondent_index)
        if phase.roles and key in phase.roles:
            return phase.roles[key]
        if self.dsl.global_roles and key in self.dsl.global_roles:
            return self.dsl.global_roles[key]
        return None

    def build_system_prompt(self, base_prompt: str, phase_index: int, respondent_index: int) -> str:
        phase = self.dsl.phases[phase_index]
        prompt = base_prompt
        if self.dsl.global_prompt:
            prompt += f"\n\n{self.dsl.global_prompt}"

        prompt += f'\n\n--- DSL Conversation Mode: "{self.dsl.name}" ---'
        prompt += f"\nPhase {phase_index + 1}: {phase.name}"
        if self.dsl.description:
            prompt += f"\nConversation Description: {self.dsl.description}"

        role = self.role_for(respondent_index, phase)
        if role:
            prompt += f"\nYour Role: {role}"
        return prompt

    # =========================================================================
    # Visibility
    # =========================================================================

    def filter_messages(
        self,
        all_messages: Sequence[Message],
        responding_model_id: str,
        exclude_message_id: str | None,
        phase: DSLPhase,
        previous_phase_ids: Sequence[str] = (),
    ) -> list[Message]:
        ordered = sort_messages(all_messages, exclude_message_id)
        if phase.context is ContextMode.USER_ONLY:
            return [message for message in ordered if message.is_user]

        if phase.context is ContextMode.PHASE_PREVIOUS:
            allowed = set(previous_phase_ids)
            ordered = [
                message for message in ordered
                if message.is_user or message.id in allowed
            ]

        return [self._attribute(message, phase) for message in ordered]

    def _attribute(self, message: Message, phase: DSLPhase) -> Message:
        if not message.is_assistant or not message.model_id:
            return message
        index = self._candidates.index(message.model_id) if message.model_id in self._candidates else -1
        role = self.role_for(index, phase) if index >= 0 else None
        return attribute_message(message, self.registry.display_name(message.model_id), role)

    def _phase_filter(self, phase: DSLPhase, previous_phase_ids: list[str]) -> MessageFilter:
        def visible(
            all_messages: Sequence[Message],
            responding_model_id: str,
            exclude_message_id: str | None = None,
        ) -> list[Message]:
            return self.filter_messages(
                all_messages,
                responding_model_id,
                exclude_message_id,
                phase,
                previous_phase_ids,
            )

        return visible

    # =========================================================================
    # Execution
    # =========================================================================

    async def run(self, turn: TurnRequest, launcher: RoundLauncher) -> ExecutionContext:
        """Execute every phase for one turn and return the fresh context."""
        self._candidates = list(turn.candidates)
        context = ExecutionContext()
        last_index = len(self.dsl.phases) - 1

        for index, phase in enumerate(self.dsl.phases):
            context.current_phase = index
            positions = self.resolve_positions(phase.models, turn.candidates)
            selected = [turn.candidates[position] for position in positions]
            logger.info(
                "Starting DSL phase",
                dsl=self.dsl.name,
                phase=phase.name,
                phase_number=index + 1,
                models=selected,
            )

            temperature = phase.temperature if phase.temperature is not None else turn.temperature
            slots = []
            for model_id, respondent_index in zip(selected, positions):
                slots.append(
                    ResponseSlot(
                        model_id=model_id,
                        respondent_index=respondent_index,
                        system_prompt=self.build_system_prompt(
                            turn.system_prompt, index, respondent_index
                        ),
                        temperature=temperature,
                        prompt=phase.prompt,
                    )
                )

            previous_ids = context.previous_phase_ids(self.dsl.phases)
            ids = await launcher.launch(
                Round(name=phase.name, slots=slots),
                self._phase_filter(phase, previous_ids),
            )
            context.phase_results[phase.name] = ids
            context.completed_phases.append(phase.name)

            if phase.wait_for_completion and index < last_index:
                await launcher.wait()

        return context
