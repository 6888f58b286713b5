"""Role-based modes: Debate, ExpertPanel and ConsensusBuilding.

All three share Discuss visibility. Debate and ExpertPanel assign each
respondent a role from a fixed list (respondent index modulo list length)
and attribute history as ``[Name as Role]: ``. ConsensusBuilding keeps plain
attribution and varies its instructions by discussion round.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from chorus.conversation.models import Message
from chorus.modes.base import ModeType, TurnRequest
from chorus.modes.discuss import DiscussPolicy


# =============================================================================
# Debate
# =============================================================================

DEBATE_POSITIONS: tuple[str, ...] = (
    "Advocate (Pro)",
    "Critic (Con)",
    "Skeptical Analyst",
    "Devil's Advocate",
    "Pragmatic Realist",
    "Idealistic Visionary",
)

_DEBATE_INSTRUCTIONS = {
    "Advocate (Pro)": (
        "Argue strongly in favor. Present benefits, advantages, and positive "
        "outcomes. Build the strongest case for 'yes'."
    ),
    "Critic (Con)": (
        "Argue strongly against. Present risks, disadvantages, and negative "
        "outcomes. Build the strongest case for 'no'."
    ),
    "Skeptical Analyst": (
        "Question assumptions and examine evidence critically. Challenge weak "
        "arguments from all sides."
    ),
    "Devil's Advocate": (
        "Take the contrarian position. Challenge the most popular viewpoints "
        "and present alternative perspectives."
    ),
    "Pragmatic Realist": (
        "Focus on practical implementation, real-world constraints, and "
        "feasibility concerns."
    ),
    "Idealistic Visionary": (
        "Present the ideal scenario and long-term potential. Focus on "
        "aspirational goals and transformative possibilities."
    ),
}

_PRO_INSTRUCTIONS = (
    "Argue in favor of the topic/proposal. Present the strongest possible case "
    "for why this is beneficial, correct, or should be implemented."
)
_CON_INSTRUCTIONS = (
    "Argue against the topic/proposal. Present the strongest possible case for "
    "why this is problematic, incorrect, or should not be implemented."
)

_DEBATE_GUIDELINES = """Debate Guidelines:
- Stay committed to your assigned position throughout the discussion
- Present strong, evidence-based arguments
- Acknowledge valid points from opponents while maintaining your stance
- Directly address and counter opposing arguments when you can see them
- If this is a follow-up round, respond to specific points made by other debaters
- Structure your argument clearly with main points and supporting evidence"""


class DebatePolicy(DiscussPolicy):
    """Structured debate; two respondents argue Pro and Con."""

    mode = ModeType.DEBATE
    description = "Models take opposing positions and argue them"

    def position(self, respondent_index: int) -> str:
        return DEBATE_POSITIONS[respondent_index % len(DEBATE_POSITIONS)]

    def role_label(self, model_id: str) -> str | None:
        index = self.index_of(model_id)
        return self.position(index) if index >= 0 else None

    def system_prompt_for(self, base_prompt: str, respondent_index: int, turn: TurnRequest) -> str:
        position = self.position(respondent_index)
        if len(turn.candidates) == 2:
            instructions = _PRO_INSTRUCTIONS if respondent_index == 0 else _CON_INSTRUCTIONS
        else:
            instructions = _DEBATE_INSTRUCTIONS[position]
        return (
            f"{base_prompt}\n\n"
            f"DEBATE MODE - {position.upper()}:\n"
            f"You are participating in a structured debate as the {position}.\n\n"
            f"Your role: {instructions}\n\n"
            f"{_DEBATE_GUIDELINES}\n\n"
            f"Current debate position: {position}\n"
            "Maintain this perspective consistently while engaging constructively "
            "with other viewpoints."
        )


# =============================================================================
# Expert panel
# =============================================================================


@dataclass(frozen=True)
class ExpertRole:
    role: str
    description: str


EXPERT_ROLES: tuple[ExpertRole, ...] = (
    ExpertRole(
        "Research Scientist",
        "Focus on empirical evidence, research methodologies, and scientific "
        "rigor. Cite relevant studies and data.",
    ),
    ExpertRole(
        "Systems Engineer",
        "Analyze from a technical implementation perspective. Consider "
        "scalability, efficiency, and practical constraints.",
    ),
    ExpertRole(
        "Philosophy Expert",
        "Examine ethical implications, logical frameworks, and fundamental "
        "principles. Question assumptions.",
    ),
    ExpertRole(
        "Business Strategist",
        "Evaluate commercial viability, market implications, and practical "
        "business considerations.",
    ),
    ExpertRole(
        "User Experience Designer",
        "Focus on human-centered design, usability, accessibility, and user needs.",
    ),
    ExpertRole(
        "Risk Analyst",
        "Identify potential risks, vulnerabilities, and unintended consequences. "
        "Assess probability and impact.",
    ),
    ExpertRole(
        "Creative Innovator",
        "Think outside the box with novel approaches, alternative solutions, "
        "and creative perspectives.",
    ),
    ExpertRole(
        "Policy Expert",
        "Consider regulatory compliance, legal implications, and governance "
        "frameworks.",
    ),
)

_EXPERT_GUIDELINES = """Guidelines for your response:
- Respond primarily from your assigned expert perspective
- Draw on knowledge and methodologies specific to your field
- Consider how other experts' viewpoints relate to your field
- Acknowledge when topics fall outside your primary expertise
- Build on insights from other experts when they align with your field"""


class ExpertPanelPolicy(DiscussPolicy):
    """Each respondent speaks as a domain expert."""

    mode = ModeType.EXPERT_PANEL
    description = "Models act as experts from different fields"

    def expert(self, respondent_index: int) -> ExpertRole:
        return EXPERT_ROLES[respondent_index % len(EXPERT_ROLES)]

    def role_label(self, model_id: str) -> str | None:
        index = self.index_of(model_id)
        return self.expert(index).role if index >= 0 else None

    def system_prompt_for(self, base_prompt: str, respondent_index: int, turn: TurnRequest) -> str:
        expert = self.expert(respondent_index)
        return (
            f"{base_prompt}\n\n"
            f"EXPERT PANEL MODE - {expert.role.upper()}:\n"
            f"You are participating in an expert panel discussion as a {expert.role}.\n\n"
            f"Your specialized perspective: {expert.description}\n\n"
            f"{_EXPERT_GUIDELINES}\n\n"
            f"Remember: You are the {expert.role} on this panel. Provide the insights "
            "that only someone with your expertise would offer."
        )


# =============================================================================
# Consensus building
# =============================================================================

_CONSENSUS_ROUNDS = {
    1: """INITIAL POSITION ROUND:
- Present your initial perspective on the topic
- Share your reasoning and key considerations
- Identify potential areas where others might disagree
- Be open to having your mind changed by good arguments
- End with 2-3 specific questions you'd like other participants to address""",
    2: """CONVERGENCE ROUND:
- Review the initial positions from other participants
- Identify areas where you agree with others
- Address the specific questions others have raised
- Present a refined position that incorporates insights from others
- Highlight remaining areas of disagreement that need resolution""",
    3: """CONSENSUS ROUND:
- Work toward finding common ground and shared understanding
- Propose specific compromises or synthesis solutions
- Address any remaining disagreements constructively
- If full consensus isn't possible, clearly articulate the remaining differences
- Summarize the collective wisdom that has emerged""",
}

_CONSENSUS_CONTINUED = """CONTINUED CONSENSUS BUILDING:
- Continue working toward greater alignment
- Build on the progress made in previous rounds
- Address any new concerns that have emerged
- Focus on practical next steps and implementation"""

_CONSENSUS_PRINCIPLES = """Core Principles:
- Approach this collaboratively, not competitively
- Be willing to change your position when presented with compelling arguments
- Look for win-win solutions and creative compromises
- Be specific about where you agree and where you still have concerns"""


def consensus_round(messages: Sequence[Message]) -> int:
    """Discussion round: the number of user messages, at least 1."""
    return max(1, sum(1 for message in messages if message.is_user))


class ConsensusBuildingPolicy(DiscussPolicy):
    """Works toward agreement over successive user turns."""

    mode = ModeType.CONSENSUS_BUILDING
    description = "Models work toward a shared position over several rounds"

    def system_prompt_for(self, base_prompt: str, respondent_index: int, turn: TurnRequest) -> str:
        round_number = consensus_round(turn.history)
        instructions = _CONSENSUS_ROUNDS.get(round_number, _CONSENSUS_CONTINUED)
        return (
            f"{base_prompt}\n\n"
            f"CONSENSUS BUILDING MODE - ROUND {round_number}:\n"
            "You are participating in a consensus-building discussion aimed at "
            "finding shared understanding and agreement.\n\n"
            f"{instructions}\n\n"
            f"{_CONSENSUS_PRINCIPLES}\n\n"
            'Remember: The goal is not to "win" but to find the best collective '
            "solution through respectful dialogue."
        )
