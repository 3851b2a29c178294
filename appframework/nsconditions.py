"""Namespace status conditions describing the progress of namespace deletion."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from appframework.kube import GroupVersionResource

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

NAMESPACE_DELETION_DISCOVERY_FAILURE = "NamespaceDeletionDiscoveryFailure"
NAMESPACE_DELETION_GV_PARSING_FAILURE = "NamespaceDeletionGroupVersionParsingFailure"
NAMESPACE_DELETION_CONTENT_FAILURE = "NamespaceDeletionContentFailure"
NAMESPACE_CONTENT_REMAINING = "NamespaceContentRemaining"
NAMESPACE_FINALIZERS_REMAINING = "NamespaceFinalizersRemaining"

CONDITION_TYPES = (
    NAMESPACE_DELETION_DISCOVERY_FAILURE,
    NAMESPACE_DELETION_GV_PARSING_FAILURE,
    NAMESPACE_DELETION_CONTENT_FAILURE,
    NAMESPACE_CONTENT_REMAINING,
    NAMESPACE_FINALIZERS_REMAINING,
)

_OK_MESSAGES = {
    NAMESPACE_DELETION_DISCOVERY_FAILURE: "All resources successfully discovered",
    NAMESPACE_DELETION_GV_PARSING_FAILURE: "All legacy kube types successfully parsed",
    NAMESPACE_DELETION_CONTENT_FAILURE: "All content successfully deleted, may be waiting on finalization",
    NAMESPACE_CONTENT_REMAINING: "All content successfully removed",
    NAMESPACE_FINALIZERS_REMAINING: "All content-preserving finalizers finished",
}

_OK_REASONS = {
    NAMESPACE_DELETION_DISCOVERY_FAILURE: "ResourcesDiscovered",
    NAMESPACE_DELETION_GV_PARSING_FAILURE: "ParsedGroupVersions",
    NAMESPACE_DELETION_CONTENT_FAILURE: "ContentDeleted",
    NAMESPACE_CONTENT_REMAINING: "ContentRemoved",
    NAMESPACE_FINALIZERS_REMAINING: "ContentHasNoFinalizers",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class NamespaceCondition:
    """One condition in a namespace's status."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: datetime = field(default_factory=_now)


@dataclass
class ContentTotals:
    """What is left in a namespace after a deletion pass."""

    gvr_to_num_remaining: dict[GroupVersionResource, int] = field(default_factory=dict)
    finalizers_to_num_remaining: dict[str, int] = field(default_factory=dict)


def _get_condition(
    conditions: list[NamespaceCondition], condition_type: str
) -> NamespaceCondition | None:
    return next((c for c in conditions if c.type == condition_type), None)


def _successful_condition(condition_type: str) -> NamespaceCondition:
    return NamespaceCondition(
        type=condition_type,
        status=CONDITION_FALSE,
        reason=_OK_REASONS[condition_type],
        message=_OK_MESSAGES[condition_type],
    )


def _delete_content_condition(errors: list[BaseException]) -> NamespaceCondition | None:
    if not errors:
        return None
    messages = sorted(str(err) for err in errors)
    return NamespaceCondition(
        type=NAMESPACE_DELETION_CONTENT_FAILURE,
        status=CONDITION_TRUE,
        reason="ContentDeletionFailed",
        message=(
            f"Failed to delete all resource types, {len(errors)} remaining: "
            + ", ".join(messages)
        ),
    )


def update_conditions(
    conditions: list[NamespaceCondition], new_conditions: list[NamespaceCondition]
) -> bool:
    """Bring ``conditions`` in line with ``new_conditions``; tell whether anything changed.

    Every maintained condition type missing from ``new_conditions`` is set to
    its successful variant.
    """
    changed = False
    for condition_type in CONDITION_TYPES:
        new = _get_condition(new_conditions, condition_type) or _successful_condition(
            condition_type
        )
        old = _get_condition(conditions, condition_type)
        if old is None:
            conditions.append(replace(new))
            changed = True
        elif (old.status, old.message, old.reason) != (new.status, new.message, new.reason):
            if old.status != new.status:
                old.last_transition_time = _now()
            old.type = new.type
            old.status = new.status
            old.reason = new.reason
            old.message = new.message
            changed = True
    return changed


class NamespaceConditionUpdater:
    """Collects deletion errors and turns them into namespace conditions."""

    def __init__(self) -> None:
        self.new_conditions: list[NamespaceCondition] = []
        self.delete_content_errors: list[BaseException] = []

    def process_group_version_err(self, err: BaseException) -> None:
        """Record that group versions of resources could not be parsed."""
        self.new_conditions.append(
            NamespaceCondition(
                type=NAMESPACE_DELETION_GV_PARSING_FAILURE,
                status=CONDITION_TRUE,
                reason="GroupVersionParsingFailed",
                message=str(err),
            )
        )

    def process_discover_resources_err(self, err: BaseException) -> None:
        """Record that resource discovery failed.

        An error carrying a ``groups`` mapping reports how many groups failed.
        """
        groups = getattr(err, "groups", None)
        if isinstance(groups, Mapping):
            message = f"Discovery failed for some groups, {len(groups)} failing: {err}"
        else:
            message = str(err)
        self.new_conditions.append(
            NamespaceCondition(
                type=NAMESPACE_DELETION_DISCOVERY_FAILURE,
                status=CONDITION_TRUE,
                reason="DiscoveryFailed",
                message=message,
            )
        )

    def process_content_totals(self, totals: ContentTotals) -> None:
        """Record remaining resources and the finalizers holding them."""
        if totals.gvr_to_num_remaining:
            remaining = sorted(
                f"{gvr.resource}.{gvr.group} has {count} resource instances"
                for gvr, count in totals.gvr_to_num_remaining.items()
                if count
            )
            self.new_conditions.append(
                NamespaceCondition(
                    type=NAMESPACE_CONTENT_REMAINING,
                    status=CONDITION_TRUE,
                    reason="SomeResourcesRemain",
                    message="Some resources are remaining: " + ", ".join(remaining),
                )
            )
        if totals.finalizers_to_num_remaining:
            by_finalizer = sorted(
                f"{finalizer} in {count} resource instances"
                for finalizer, count in totals.finalizers_to_num_remaining.items()
                if count
            )
            self.new_conditions.append(
                NamespaceCondition(
                    type=NAMESPACE_FINALIZERS_REMAINING,
                    status=CONDITION_TRUE,
                    reason="SomeFinalizersRemain",
                    message=(
                        "Some content in the namespace has finalizers remaining: "
                        + ", ".join(by_finalizer)
                    ),
                )
            )

    def process_delete_content_err(self, err: BaseException) -> None:
        """Record a failure to delete content."""
        self.delete_content_errors.append(err)

    def update(self, conditions: list[NamespaceCondition]) -> bool:
        """Write the collected conditions into ``conditions``; tell whether they changed."""
        if _get_condition(self.new_conditions, NAMESPACE_DELETION_CONTENT_FAILURE) is None:
            condition = _delete_content_condition(self.delete_content_errors)
            if condition is not None:
                self.new_conditions.append(condition)
        return update_conditions(conditions, self.new_conditions)