"""Status normalization at system boundaries.

Raw stage strings arrive from storage rows written by older ingestion code,
from HTTP requests, and from external workers. This module is the only
place those strings are matched; everything past it works with Stage.

normalize() is:
- total over canonical values and known legacy aliases,
- idempotent: normalize(normalize(x)) == normalize(x),
- pure.

Values that match neither raise UnknownStageError. There is no default
stage for unrecognized input.
"""

import logging
from typing import Dict, FrozenSet, Union

from src.content_pipeline.status.models import Stage


logger = logging.getLogger(__name__)


# Legacy spellings still present in older rows and clients.
LEGACY_ALIASES: Dict[str, Stage] = {
    # Review UI
    "approved": Stage.IDEA_SELECTED,
    # Early database schema
    "idea": Stage.DISCOVERED,
    "script_rejected": Stage.REJECTED,
}


class UnknownStageError(ValueError):
    """Raised when a raw value is neither a canonical stage nor an alias.

    Attributes:
        raw_value: The value that could not be normalized.
    """

    def __init__(self, raw_value: object):
        self.raw_value = raw_value
        super().__init__(f"Unknown stage value: {raw_value!r}")


def _canonical_key(raw: str) -> str:
    return raw.strip().lower().replace("-", "_").replace(" ", "_")


_LOOKUP: Dict[str, Stage] = {stage.value: stage for stage in Stage}
_LOOKUP.update(LEGACY_ALIASES)


def normalize(raw_value: Union[str, Stage]) -> Stage:
    """Map a raw stage value to its canonical Stage.

    Matching ignores case and surrounding whitespace, and treats "-" and
    " " as "_", so "Script-Generating" and "script_generating" agree.

    Args:
        raw_value: A Stage or a raw string.

    Returns:
        The canonical Stage.

    Raises:
        UnknownStageError: If the value is not a canonical stage or a
            known legacy alias.

    Example:
        >>> normalize("idea")
        <Stage.DISCOVERED: 'discovered'>
        >>> normalize(Stage.RENDERING)
        <Stage.RENDERING: 'rendering'>
    """
    if isinstance(raw_value, Stage):
        return raw_value
    if not isinstance(raw_value, str):
        raise UnknownStageError(raw_value)

    stage = _LOOKUP.get(_canonical_key(raw_value))
    if stage is None:
        logger.warning(
            "Unrecognized stage value",
            extra={"raw_value": raw_value},
        )
        raise UnknownStageError(raw_value)
    return stage


def is_known(raw_value: str) -> bool:
    """Check whether a raw value normalizes without error."""
    return isinstance(raw_value, str) and _canonical_key(raw_value) in _LOOKUP


def raw_values_for(stage: Stage) -> FrozenSet[str]:
    """Return every stored spelling that normalizes to stage.

    Storage queries use this so rows still holding a legacy alias are
    matched by their canonical stage.

    Example:
        >>> sorted(raw_values_for(Stage.DISCOVERED))
        ['discovered', 'idea']
    """
    return frozenset(
        value for value, target in _LOOKUP.items() if target == stage
    )


def stored_values() -> FrozenSet[str]:
    """Return every raw value the storage layer may legitimately hold."""
    return frozenset(_LOOKUP)
