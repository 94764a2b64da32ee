"""
Status Workflow Engines - strict state machines for a report.

Two independent machines live on the same record:
- PipelineStateMachine: ai_pipeline_status, driven only by the enrichment pipeline
- ResolutionWorkflowEngine: status, driven only by staff

DESIGN PRINCIPLES:
- No skipping states
- No backward transitions (except failed → processing on explicit re-trigger)
- Invalid transitions rejected programmatically
"""

from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional

from app.models.report import PipelineStatus, ResolutionStatus


class PipelineStateMachine:
    """
    pending → processing → completed
                        ↘ failed → processing (explicit re-trigger only)
    """

    ALLOWED_TRANSITIONS: Dict[PipelineStatus, List[PipelineStatus]] = {
        PipelineStatus.PENDING: [PipelineStatus.PROCESSING, PipelineStatus.FAILED],
        PipelineStatus.PROCESSING: [PipelineStatus.COMPLETED, PipelineStatus.FAILED],
        PipelineStatus.FAILED: [PipelineStatus.PROCESSING],
        PipelineStatus.COMPLETED: [],  # Terminal
    }

    TERMINAL: FrozenSet[PipelineStatus] = frozenset({PipelineStatus.COMPLETED, PipelineStatus.FAILED})

    @classmethod
    def is_valid_transition(cls, from_status: str, to_status: str) -> bool:
        try:
            from_enum = PipelineStatus(from_status)
            to_enum = PipelineStatus(to_status)
        except ValueError:
            return False

        # Re-entering processing is how concurrent or redelivered triggers overlap
        if from_enum == to_enum:
            return from_enum == PipelineStatus.PROCESSING

        return to_enum in cls.ALLOWED_TRANSITIONS.get(from_enum, [])

    @classmethod
    def allowed_sources(cls, target: PipelineStatus, include_self: bool = True) -> FrozenSet[PipelineStatus]:
        """All statuses from which `target` may be entered."""
        sources = {
            source for source, targets in cls.ALLOWED_TRANSITIONS.items()
            if target in targets
        }
        if include_self and cls.is_valid_transition(target.value, target.value):
            sources.add(target)
        return frozenset(sources)

    @classmethod
    def processing_sources(cls, retry_failed: bool) -> FrozenSet[PipelineStatus]:
        """
        Statuses a trigger may move into processing.

        failed is only eligible for an explicit re-trigger; a bare redelivery
        of a trigger must not start a new attempt.
        """
        sources = cls.allowed_sources(PipelineStatus.PROCESSING)
        if not retry_failed:
            sources = sources - {PipelineStatus.FAILED}
        return sources

    @classmethod
    def failure_sources(cls) -> FrozenSet[PipelineStatus]:
        """Statuses the failure path may overwrite; never completed."""
        return cls.allowed_sources(PipelineStatus.FAILED, include_self=False)


class ResolutionWorkflowEngine:
    """
    Staff resolution lifecycle.

    pending → in_progress → resolved
    pending | in_progress → duplicate
    """

    ALLOWED_TRANSITIONS: Dict[ResolutionStatus, List[ResolutionStatus]] = {
        ResolutionStatus.PENDING: [ResolutionStatus.IN_PROGRESS, ResolutionStatus.DUPLICATE],
        ResolutionStatus.IN_PROGRESS: [ResolutionStatus.RESOLVED, ResolutionStatus.DUPLICATE],
        ResolutionStatus.RESOLVED: [],
        ResolutionStatus.DUPLICATE: [],
    }

    @classmethod
    def is_valid_transition(cls, from_status: str, to_status: str) -> bool:
        """
        Check if a status transition is valid.

        Args:
            from_status: Current status
            to_status: Desired new status

        Returns:
            True if transition is allowed, False otherwise
        """
        try:
            from_enum = ResolutionStatus(from_status)
            to_enum = ResolutionStatus(to_status)
        except ValueError:
            return False

        return to_enum in cls.ALLOWED_TRANSITIONS.get(from_enum, [])

    @classmethod
    def get_allowed_transitions(cls, current_status: str) -> List[str]:
        try:
            current_enum = ResolutionStatus(current_status)
        except ValueError:
            return []
        return [status.value for status in cls.ALLOWED_TRANSITIONS.get(current_enum, [])]

    @classmethod
    def validate_and_transition(
        cls,
        current_status: str,
        new_status: str,
        after_image_url: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict:
        """
        Validate a transition and build the field update for it.

        Stamps assigned_at/in_progress_at when work starts and resolved_at when
        the issue is resolved.

        Raises:
            ValueError: If transition is invalid
        """
        if not cls.is_valid_transition(current_status, new_status):
            allowed = cls.get_allowed_transitions(current_status)
            raise ValueError(
                f"Invalid status transition: {current_status} → {new_status}. "
                f"Allowed transitions from {current_status}: {allowed}"
            )

        now = now or datetime.now(timezone.utc)
        update: Dict = {"status": ResolutionStatus(new_status).value, "updated_at": now}

        if new_status == ResolutionStatus.IN_PROGRESS.value:
            update["assigned_at"] = now
            update["in_progress_at"] = now
        elif new_status == ResolutionStatus.RESOLVED.value:
            update["resolved_at"] = now

        if after_image_url:
            update["after_image_url"] = after_image_url

        return update
