import pytest

from appframework.k8sdynamic import (
    DynamicClient,
    GroupVersionKind,
    ResourceDescriptor,
    remove_commented_parts,
    split_to_individual_resources,
    yaml_to_object,
)
from appframework.kube import ApiError, ApiResource, GroupVersionResource, NotFoundError


class FakeKube:
    def __init__(self, existing=None):
        self.resources = {
            "v1": [
                ApiResource("services", "Service", True),
                ApiResource("namespaces", "Namespace", False),
            ],
            "apps/v1": [ApiResource("deployments", "Deployment", True)],
        }
        self.objects = dict(existing or {})
        self.calls = []

    def server_resources_for_group_version(self, group_version):
        if group_version not in self.resources:
            raise NotFoundError("no such group", 404)
        return self.resources[group_version]

    def get(self, gvr, name, namespace=""):
        key = (gvr.resource, namespace, name)
        if key not in self.objects:
            raise NotFoundError("not found", 404)
        return self.objects[key]

    def create(self, gvr, obj, namespace=""):
        self.calls.append(("create", gvr, namespace, obj))
        return obj

    def update(self, gvr, obj, namespace=""):
        self.calls.append(("update", gvr, namespace, obj))
        return obj

    def merge_patch(self, gvr, name, patch, namespace=""):
        self.calls.append(("patch", gvr, namespace, patch))
        return patch

    def delete(self, gvr, name, namespace="", grace_period_seconds=None, propagation_policy=None):
        self.calls.append(("delete", gvr, namespace, name, grace_period_seconds, propagation_policy))


DEPLOYMENT = "apiVersion: apps/v1\nkind: Deployment\nmetadata:\n  name: web\n"
DEPLOYMENTS = GroupVersionResource("apps", "v1", "deployments")


def test_split_on_separator():
    assert split_to_individual_resources("a: 1\n---\nb: 2") == ["a: 1\n", "\nb: 2"]


def test_remove_commented_parts():
    text = "key: v # note\n# whole line\nother: 1"
    assert remove_commented_parts(text) == "key: v \n\nother: 1"


def test_yaml_to_object_parses_mapping():
    assert yaml_to_object(DEPLOYMENT) == {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "web"},
    }


def test_yaml_to_object_rejects_scalar():
    with pytest.raises(ValueError):
        yaml_to_object("- a\n- b\n")


def test_group_version_kind_of_named_and_core_group():
    assert GroupVersionKind.of({"apiVersion": "apps/v1", "kind": "Deployment"}) == GroupVersionKind("apps", "v1", "Deployment")
    assert GroupVersionKind.of({"apiVersion": "v1", "kind": "Service"}) == GroupVersionKind("", "v1", "Service")


def test_descriptor_round_trip():
    descriptor = ResourceDescriptor("pna", "app", GroupVersionResource("ops.dac.nokia.com", "v1alpha1", "privatenetworkaccesses"))
    assert ResourceDescriptor.from_dict(descriptor.to_dict()) == descriptor


def test_descriptor_omits_empty_name_and_namespace():
    assert ResourceDescriptor().to_dict() == {"gvr": {}}


def test_apply_creates_missing_namespaced_resource():
    kube = FakeKube()
    descriptor = DynamicClient(kube).apply_yaml_resource(DEPLOYMENT, "app")
    assert descriptor == ResourceDescriptor("web", "app", DEPLOYMENTS)
    assert kube.calls[0][0] == "create"
    assert kube.calls[0][2] == "app"


def test_apply_cluster_scoped_resource_has_no_namespace():
    kube = FakeKube()
    descriptor = DynamicClient(kube).apply_yaml_resource("apiVersion: v1\nkind: Namespace\nmetadata:\n  name: team\n", "app")
    assert descriptor.namespace == ""
    assert kube.calls[0][2] == ""


def test_apply_updates_existing_with_resource_version():
    kube = FakeKube({("deployments", "app", "web"): {"metadata": {"resourceVersion": "42"}}})
    DynamicClient(kube).apply_yaml_resource(DEPLOYMENT, "app")
    action, _, _, obj = kube.calls[0]
    assert action == "update"
    assert obj["metadata"]["resourceVersion"] == "42"


def test_apply_patches_existing_service():
    kube = FakeKube({("services", "app", "svc"): {"metadata": {"resourceVersion": "7"}}})
    DynamicClient(kube).apply_yaml_resource("apiVersion: v1\nkind: Service\nmetadata:\n  name: svc\n", "app")
    assert kube.calls[0][0] == "patch"


def test_api_resource_for_requires_version_and_kind():
    with pytest.raises(ValueError):
        DynamicClient(FakeKube()).api_resource_for(GroupVersionKind("apps", "", "Deployment"))


def test_api_resource_for_unknown_kind():
    with pytest.raises(LookupError):
        DynamicClient(FakeKube()).api_resource_for(GroupVersionKind("apps", "v1", "Missing"))


def test_apply_unknown_group_raises_lookup_error():
    with pytest.raises(LookupError):
        DynamicClient(FakeKube()).apply_yaml_resource("apiVersion: x.io/v9\nkind: Thing\n", "app")


def test_apply_wraps_api_failure():
    class FailingKube(FakeKube):
        def create(self, gvr, obj, namespace=""):
            raise ApiError("forbidden", 403)

    with pytest.raises(ApiError) as info:
        DynamicClient(FailingKube()).apply_yaml_resource(DEPLOYMENT, "app")
    assert info.value.status == 403


def test_apply_concatenated_skips_empty_and_commented_documents():
    kube = FakeKube()
    stream = "# header\n---\n" + DEPLOYMENT + "---\n\n---\napiVersion: v1\nkind: Service\nmetadata:\n  name: svc\n"
    descriptors = DynamicClient(kube).apply_concatenated_resources(stream, "app")
    assert [d.name for d in descriptors] == ["web", "svc"]
    assert len(kube.calls) == 2


def test_delete_resources_only_deletes_existing():
    kube = FakeKube({("deployments", "app", "web"): {"metadata": {}}})
    DynamicClient(kube).delete_resources(
        [ResourceDescriptor("web", "app", DEPLOYMENTS), ResourceDescriptor("gone", "app", DEPLOYMENTS)]
    )
    assert kube.calls == [("delete", DEPLOYMENTS, "app", "web", 0, "Background")]