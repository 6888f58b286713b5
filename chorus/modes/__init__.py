"""
Modes Module - conversation mode policies

Each policy decides, per turn, who responds and what each respondent sees.
"""

from chorus.modes.base import (
    ModePolicy,
    ModeType,
    ResponseSlot,
    Round,
    TurnRequest,
    build_request_messages,
)
from chorus.modes.discuss import DiscussPolicy
from chorus.modes.factory import create_policy
from chorus.modes.isolated import IsolatedPolicy
from chorus.modes.refinement import CollaborativeRefinementPolicy
from chorus.modes.roles import ConsensusBuildingPolicy, DebatePolicy, ExpertPanelPolicy
from chorus.modes.round_robin import RoundRobinPolicy

__all__ = [
    "CollaborativeRefinementPolicy",
    "ConsensusBuildingPolicy",
    "DebatePolicy",
    "DiscussPolicy",
    "ExpertPanelPolicy",
    "IsolatedPolicy",
    "ModePolicy",
    "ModeType",
    "ResponseSlot",
    "Round",
    "RoundRobinPolicy",
    "TurnRequest",
    "build_request_messages",
    "create_policy",
]
