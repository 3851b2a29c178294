from appframework.kube import GroupVersionResource
from appframework.nsconditions import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    CONDITION_TYPES,
    NAMESPACE_CONTENT_REMAINING,
    NAMESPACE_DELETION_CONTENT_FAILURE,
    NAMESPACE_DELETION_DISCOVERY_FAILURE,
    NAMESPACE_DELETION_GV_PARSING_FAILURE,
    NAMESPACE_FINALIZERS_REMAINING,
    ContentTotals,
    NamespaceCondition,
    NamespaceConditionUpdater,
    update_conditions,
)


def by_type(conditions):
    return {c.type: c for c in conditions}


class DiscoveryFailure(Exception):
    def __init__(self, groups):
        super().__init__("discovery broke")
        self.groups = groups


def test_update_without_errors_sets_all_successful():
    conditions = []
    assert NamespaceConditionUpdater().update(conditions) is True
    assert [c.type for c in conditions] == list(CONDITION_TYPES)
    assert all(c.status == CONDITION_FALSE for c in conditions)
    assert by_type(conditions)[NAMESPACE_CONTENT_REMAINING].reason == "ContentRemoved"
    assert by_type(conditions)[NAMESPACE_DELETION_DISCOVERY_FAILURE].message == (
        "All resources successfully discovered"
    )


def test_second_identical_update_reports_no_change():
    conditions = []
    NamespaceConditionUpdater().update(conditions)
    before = [(c.type, c.status, c.reason, c.message, c.last_transition_time) for c in conditions]
    assert NamespaceConditionUpdater().update(conditions) is False
    after = [(c.type, c.status, c.reason, c.message, c.last_transition_time) for c in conditions]
    assert after == before


def test_discovery_error_condition():
    updater = NamespaceConditionUpdater()
    updater.process_discover_resources_err(ValueError("no server"))
    conditions = []
    updater.update(conditions)
    cond = by_type(conditions)[NAMESPACE_DELETION_DISCOVERY_FAILURE]
    assert cond.status == CONDITION_TRUE
    assert cond.reason == "DiscoveryFailed"
    assert cond.message == "no server"


def test_discovery_error_with_groups_counts_them():
    updater = NamespaceConditionUpdater()
    updater.process_discover_resources_err(DiscoveryFailure({"a/v1": "x", "b/v1": "y"}))
    conditions = []
    updater.update(conditions)
    assert by_type(conditions)[NAMESPACE_DELETION_DISCOVERY_FAILURE].message == (
        "Discovery failed for some groups, 2 failing: discovery broke"
    )


def test_group_version_error_condition():
    updater = NamespaceConditionUpdater()
    updater.process_group_version_err(ValueError("bad gv"))
    conditions = []
    updater.update(conditions)
    cond = by_type(conditions)[NAMESPACE_DELETION_GV_PARSING_FAILURE]
    assert (cond.status, cond.reason, cond.message) == (
        CONDITION_TRUE,
        "GroupVersionParsingFailed",
        "bad gv",
    )


def test_delete_content_errors_are_sorted_and_counted():
    updater = NamespaceConditionUpdater()
    updater.process_delete_content_err(RuntimeError("b failed"))
    updater.process_delete_content_err(RuntimeError("a failed"))
    conditions = []
    updater.update(conditions)
    cond = by_type(conditions)[NAMESPACE_DELETION_CONTENT_FAILURE]
    assert cond.reason == "ContentDeletionFailed"
    assert cond.message == "Failed to delete all resource types, 2 remaining: a failed, b failed"


def test_content_totals_conditions():
    updater = NamespaceConditionUpdater()
    updater.process_content_totals(
        ContentTotals(
            gvr_to_num_remaining={
                GroupVersionResource("apps", "v1", "statefulsets"): 2,
                GroupVersionResource("", "v1", "pods"): 0,
            },
            finalizers_to_num_remaining={"app.dac.nokia.com": 2},
        )
    )
    conditions = []
    updater.update(conditions)
    found = by_type(conditions)
    assert found[NAMESPACE_CONTENT_REMAINING].message == (
        "Some resources are remaining: statefulsets.apps has 2 resource instances"
    )
    assert found[NAMESPACE_FINALIZERS_REMAINING].message == (
        "Some content in the namespace has finalizers remaining: "
        "app.dac.nokia.com in 2 resource instances"
    )
    assert found[NAMESPACE_FINALIZERS_REMAINING].status == CONDITION_TRUE


def test_update_conditions_replaces_failed_with_success():
    failed = NamespaceCondition(
        type=NAMESPACE_CONTENT_REMAINING, status=CONDITION_TRUE, reason="x", message="y"
    )
    conditions = [failed]
    assert update_conditions(conditions, []) is True
    assert len(conditions) == len(CONDITION_TYPES)
    assert conditions[0] is failed
    assert failed.status == CONDITION_FALSE
    assert failed.reason == "ContentRemoved"


def test_update_conditions_keeps_time_when_status_unchanged():
    conditions = []
    update_conditions(conditions, [])
    cond = by_type(conditions)[NAMESPACE_CONTENT_REMAINING]
    stamp = cond.last_transition_time
    cond.message = "stale"
    assert update_conditions(conditions, []) is True
    assert cond.message == "All content successfully removed"
    assert cond.last_transition_time == stamp