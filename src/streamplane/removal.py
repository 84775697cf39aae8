"""Graceful-removal policy for resources that can no longer be observed.

When a read or delete fails because the resource (or the cluster hosting it)
is gone, unreachable, or no longer visible to us, the caller chooses through
``allow_deletion`` whether that is routine drift to heal by forgetting the
resource, or something that must be surfaced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .attributes import ABSENT
from .errors import (
    ReconcileError,
    is_not_found,
    is_permission_denied,
    is_removal_candidate,
    is_unreachable,
)

logger = logging.getLogger(__name__)


class RemovalDecision(str, Enum):
    """What to do with tracked state after a failed observation."""

    REMOVE = "remove_from_tracked_state"
    SURFACE_ERROR = "surface_error"


@dataclass(frozen=True)
class RemovalOutcome:
    """Decision plus the error to surface or the warning to report."""

    decision: RemovalDecision
    error: BaseException | None = None
    warning: str | None = None

    @property
    def remove(self) -> bool:
        return self.decision is RemovalDecision.REMOVE


def removal_allowed(flag: Any) -> bool:
    """allow_deletion is on unless explicitly set to false."""
    return flag is None or flag is ABSENT or bool(flag)


def decide_removal(
    error: BaseException | None, allow_removal: Any, *, resource: str = "resource"
) -> RemovalOutcome:
    """Decide whether ``resource`` should be dropped from tracked state.

    Args:
        error: The failure from the read or delete, or None when the resource
            was simply not in the listing.
        allow_removal: The resource's allow_deletion value (True, False, None
            or ABSENT).
        resource: Human-readable address used in messages.
    """
    if error is not None and not is_removal_candidate(error):
        return RemovalOutcome(RemovalDecision.SURFACE_ERROR, error=error)

    if not removal_allowed(allow_removal):
        reason = "was not found" if error is None or is_not_found(error) else "cannot be reached"
        surfaced = ReconcileError(
            f"{resource} {reason} and allow_deletion is false; refusing to drop it "
            f"from tracked state: {error or 'not found'}"
        )
        surfaced.__cause__ = error
        return RemovalOutcome(RemovalDecision.SURFACE_ERROR, error=surfaced)

    warning = None
    if error is not None and not is_not_found(error):
        if is_unreachable(error):
            kind = "its endpoint cannot be reached"
        elif is_permission_denied(error):
            kind = "access to it was denied"
        else:
            kind = "it could not be observed"
        warning = f"removing {resource} from tracked state because {kind}: {error}"
        logger.warning(warning, extra={"resource": resource, "error": str(error)})
    else:
        logger.info("Resource is gone; removing from tracked state", extra={"resource": resource})

    return RemovalOutcome(RemovalDecision.REMOVE, error=error, warning=warning)
