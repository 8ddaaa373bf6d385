"""Content status graph.

Single source of truth for which stage may move to which other stage.
Everything here is pure: no I/O, no hidden state.

The adjacency table includes explicit recovery edges so retries are
ordinary validated transitions:
- script_generation_failed → script_generating (retry generation)
- script_generated → script_generating (regenerate)
- rejected → idea_selected (re-select a rejected idea)

completed and failed are terminal under normal flow; moving an item out
of either requires a forced transition.
"""

from typing import Dict, FrozenSet, List

from src.content_pipeline.status.models import Stage


# Valid stage transitions map
#
# Key design decisions:
# - Reviewers may reject at every human checkpoint (idea, script, approved
#   script) and while a generation retry is pending
# - Generation in progress cannot be rejected; it must finish or fail first
# - Rendering has no rejection path; it completes or fails
# - FAILED has no outgoing edges; operators recover with force_transition
VALID_TRANSITIONS: Dict[Stage, FrozenSet[Stage]] = {
    # DISCOVERED: Reviewer selects the idea or rejects it
    Stage.DISCOVERED: frozenset({
        Stage.IDEA_SELECTED,
        Stage.REJECTED,
    }),
    # IDEA_SELECTED: Script generation starts, or reviewer changes their mind
    Stage.IDEA_SELECTED: frozenset({
        Stage.SCRIPT_GENERATING,
        Stage.REJECTED,
    }),
    # SCRIPT_GENERATING: Generator finishes or fails
    Stage.SCRIPT_GENERATING: frozenset({
        Stage.SCRIPT_GENERATED,
        Stage.SCRIPT_GENERATION_FAILED,
    }),
    # SCRIPT_GENERATED: Reviewer approves, rejects, or asks for regeneration
    Stage.SCRIPT_GENERATED: frozenset({
        Stage.SCRIPT_APPROVED,
        Stage.SCRIPT_GENERATING,
        Stage.REJECTED,
    }),
    # SCRIPT_APPROVED: Assets gathered, or reviewer rejects late
    Stage.SCRIPT_APPROVED: frozenset({
        Stage.ASSETS_READY,
        Stage.REJECTED,
    }),
    # SCRIPT_GENERATION_FAILED: Retry generation or give up
    Stage.SCRIPT_GENERATION_FAILED: frozenset({
        Stage.SCRIPT_GENERATING,
        Stage.REJECTED,
    }),
    # REJECTED: Can be re-selected as an idea
    Stage.REJECTED: frozenset({
        Stage.IDEA_SELECTED,
    }),
    # ASSETS_READY: Rendering starts
    Stage.ASSETS_READY: frozenset({
        Stage.RENDERING,
    }),
    # RENDERING: Renderer completes or fails
    Stage.RENDERING: frozenset({
        Stage.COMPLETED,
        Stage.FAILED,
    }),
    # COMPLETED: Terminal
    Stage.COMPLETED: frozenset(),
    # FAILED: Terminal under normal flow
    Stage.FAILED: frozenset(),
}


# Stages in which an external worker is actively processing the item.
# Items sitting in one of these for too long are reported as stuck.
PROCESSING_STAGES: FrozenSet[Stage] = frozenset({
    Stage.SCRIPT_GENERATING,
    Stage.RENDERING,
})


STAGE_CATEGORIES: Dict[str, FrozenSet[Stage]] = {
    "initial": frozenset({Stage.DISCOVERED}),
    "approved": frozenset({Stage.IDEA_SELECTED}),
    "generating": frozenset({Stage.SCRIPT_GENERATING}),
    "generated": frozenset({Stage.SCRIPT_GENERATED, Stage.SCRIPT_APPROVED}),
    "processing": frozenset({Stage.ASSETS_READY, Stage.RENDERING}),
    "final": frozenset({
        Stage.COMPLETED,
        Stage.REJECTED,
        Stage.FAILED,
        Stage.SCRIPT_GENERATION_FAILED,
    }),
}


_DISPLAY_NAMES: Dict[Stage, str] = {
    Stage.DISCOVERED: "New Idea",
    Stage.IDEA_SELECTED: "Approved for Script",
    Stage.SCRIPT_GENERATING: "Generating Script",
    Stage.SCRIPT_GENERATED: "Script Ready",
    Stage.SCRIPT_APPROVED: "Script Approved",
    Stage.SCRIPT_GENERATION_FAILED: "Script Generation Failed",
    Stage.REJECTED: "Rejected",
    Stage.ASSETS_READY: "Assets Ready",
    Stage.RENDERING: "Rendering Video",
    Stage.COMPLETED: "Video Complete",
    Stage.FAILED: "Failed",
}


def is_valid_transition(from_stage: Stage, to_stage: Stage) -> bool:
    """Check if a stage transition is valid.

    Args:
        from_stage: The current stage.
        to_stage: The target stage.

    Returns:
        bool: True if the edge is present in VALID_TRANSITIONS.

    Example:
        >>> is_valid_transition(Stage.ASSETS_READY, Stage.RENDERING)
        True
        >>> is_valid_transition(Stage.SCRIPT_GENERATED, Stage.DISCOVERED)
        False
    """
    return to_stage in VALID_TRANSITIONS.get(from_stage, frozenset())


def allowed_next_stages(from_stage: Stage) -> FrozenSet[Stage]:
    """Return the stages reachable from from_stage in one normal transition."""
    return VALID_TRANSITIONS.get(from_stage, frozenset())


def is_terminal_stage(stage: Stage) -> bool:
    """Check if a stage has no outgoing edges under normal flow.

    Example:
        >>> is_terminal_stage(Stage.COMPLETED)
        True
        >>> is_terminal_stage(Stage.REJECTED)
        False
    """
    return not VALID_TRANSITIONS.get(stage)


def is_processing_stage(stage: Stage) -> bool:
    return stage in PROCESSING_STAGES


def in_category(stage: Stage, category: str) -> bool:
    """Check if a stage belongs to one of the STAGE_CATEGORIES.

    Raises:
        KeyError: If category is not a known category name.
    """
    return stage in STAGE_CATEGORIES[category]


def display_name(stage: Stage) -> str:
    """Human-readable name of a stage. Has no effect on validity."""
    return _DISPLAY_NAMES[stage]


def transition_table() -> Dict[str, List[str]]:
    """Return the adjacency table as plain, sorted data.

    This is the reviewable form of VALID_TRANSITIONS, suitable for JSON
    responses and documentation.
    """
    return {
        stage.value: sorted(target.value for target in VALID_TRANSITIONS[stage])
        for stage in Stage
    }
