"""Policy factory keyed on ``ModeType``."""

from __future__ import annotations

from typing import Sequence

from chorus.conversation.registry import ModelRegistry
from chorus.modes.base import ModePolicy, ModeType
from chorus.modes.discuss import DiscussPolicy
from chorus.modes.isolated import IsolatedPolicy
from chorus.modes.refinement import CollaborativeRefinementPolicy
from chorus.modes.roles import ConsensusBuildingPolicy, DebatePolicy, ExpertPanelPolicy
from chorus.modes.round_robin import RoundRobinPolicy


POLICY_TYPES: dict[ModeType, type[ModePolicy]] = {
    ModeType.ISOLATED: IsolatedPolicy,
    ModeType.DISCUSS: DiscussPolicy,
    ModeType.ROUND_ROBIN: RoundRobinPolicy,
    ModeType.DEBATE: DebatePolicy,
    ModeType.EXPERT_PANEL: ExpertPanelPolicy,
    ModeType.CONSENSUS_BUILDING: ConsensusBuildingPolicy,
    ModeType.COLLABORATIVE_REFINEMENT: CollaborativeRefinementPolicy,
}


def create_policy(
    mode: ModeType | str,
    registry: ModelRegistry | None = None,
    candidates: Sequence[str] = (),
) -> ModePolicy:
    """Build the policy for one turn.

    Raises:
        ValueError: If ``mode`` is not a known mode name.
    """
    mode_type = ModeType(mode)
    return POLICY_TYPES[mode_type](registry=registry, candidates=candidates)
