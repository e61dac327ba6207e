"""Tests for manifest parsing, image sets and image diffing."""

from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import assume, given
from hypothesis import strategies as st

from compare_revisions.errors import ManifestError
from compare_revisions.kube.manifests import (
    diff_images,
    get_image_set,
    image_set,
    load_tree,
    parse_documents,
    parse_manifest,
)
from compare_revisions.kube.models import (
    Image,
    ImageAdded,
    ImageChanged,
    ImageRemoved,
    KubeID,
    KubeObject,
)

RULER_DEPLOYMENT = """\
---
apiVersion: extensions/v1beta1
kind: Deployment
metadata:
  name: ruler
  namespace: cortex
spec:
  replicas: 1
  template:
    metadata:
      labels:
        name: ruler
    spec:
      containers:
      - name: ruler
        image: quay.io/weaveworks/cortex-ruler:master-f7f6cf9e
        imagePullPolicy: IfNotPresent
        args:
        - -server.http-listen-port=80
        ports:
        - containerPort: 80
"""

RULER_ID = KubeID(namespace="cortex", name="ruler", kind="Deployment")
RULER_IMAGE = "quay.io/weaveworks/cortex-ruler"


def _ruler(tag: str) -> str:
    return RULER_DEPLOYMENT.replace("master-f7f6cf9e", tag)


# ---------------------------------------------------------------------------
# Hypothesis strategies
# ---------------------------------------------------------------------------

_text = st.text(max_size=12)
_labels = st.one_of(st.none(), _text)
_kube_ids = st.builds(KubeID, namespace=_text, name=_text, kind=_text)
_images = st.builds(Image, name=_text, label=_labels)
_kube_objects = st.builds(
    KubeObject,
    id=_kube_ids,
    images=st.lists(_images, max_size=4).map(tuple),
)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParseManifest:
    def test_parses_normal_yaml(self) -> None:
        assert parse_manifest(RULER_DEPLOYMENT) == KubeObject(
            id=RULER_ID,
            images=(Image(name=RULER_IMAGE, label="master-f7f6cf9e"),),
        )

    def test_missing_namespace_is_default(self) -> None:
        text = RULER_DEPLOYMENT.replace("  namespace: cortex\n", "")
        assert parse_manifest(text).id.namespace == "default"

    def test_init_containers_come_first(self) -> None:
        text = """\
kind: StatefulSet
metadata: {name: db, namespace: data}
spec:
  template:
    spec:
      initContainers:
      - {name: migrate, image: "example/migrate:v2"}
      containers:
      - {name: db, image: "postgres:16"}
"""
        obj = parse_manifest(text)
        assert obj.images == (Image("example/migrate", "v2"), Image("postgres", "16"))

    def test_cronjob_pod_template(self) -> None:
        text = """\
kind: CronJob
metadata: {name: report, namespace: batch}
spec:
  schedule: "@daily"
  jobTemplate:
    spec:
      template:
        spec:
          containers:
          - {name: report, image: "example/report:1.0"}
"""
        assert parse_manifest(text).images == (Image("example/report", "1.0"),)

    def test_bare_pod(self) -> None:
        text = "kind: Pod\nmetadata: {name: debug}\nspec:\n  containers:\n  - {name: sh, image: busybox}\n"
        assert parse_manifest(text) == KubeObject(KubeID("default", "debug", "Pod"), (Image("busybox", None),))

    @pytest.mark.parametrize(
        "text",
        [
            "kind: Service\nmetadata: {name: web}\nspec: {ports: []}\n",
            "kind: Deployment\nspec: {}\n",
            "just a string\n",
            "- a\n- list\n",
        ],
    )
    def test_irrelevant_documents_raise(self, text: str) -> None:
        with pytest.raises(ManifestError):
            parse_manifest(text)

    def test_invalid_yaml_raises(self) -> None:
        with pytest.raises(ManifestError):
            parse_manifest("kind: [unterminated\n")


class TestImageParse:
    @pytest.mark.parametrize(
        ("reference", "name", "label"),
        [
            ("nginx", "nginx", None),
            ("nginx:1.25", "nginx", "1.25"),
            ("quay.io/weaveworks/cortex-ruler:master-f7f6cf9e", "quay.io/weaveworks/cortex-ruler", "master-f7f6cf9e"),
            ("localhost:5000/app", "localhost:5000/app", None),
            ("localhost:5000/app:v1", "localhost:5000/app", "v1"),
            ("example/app@sha256:abcdef", "example/app", "sha256:abcdef"),
        ],
    )
    def test_split(self, reference: str, name: str, label: str | None) -> None:
        assert Image.parse(reference) == Image(name=name, label=label)

    @pytest.mark.parametrize("reference", ["nginx", "nginx:1.25", "example/app@sha256:abcdef"])
    def test_str_round_trip(self, reference: str) -> None:
        assert str(Image.parse(reference)) == reference


class TestParseDocuments:
    def test_multi_document_stream_keeps_workloads_only(self) -> None:
        text = (
            RULER_DEPLOYMENT
            + "---\nkind: Service\nmetadata: {name: ruler, namespace: cortex}\n"
            + "---\n"
            + "kind: List\nitems:\n"
            + "- kind: DaemonSet\n  metadata: {name: agent, namespace: kube-system}\n"
            + "  spec: {template: {spec: {containers: [{name: a, image: 'example/agent:3'}]}}}\n"
            + "- kind: ConfigMap\n  metadata: {name: settings}\n"
        )
        objects = parse_documents(text)
        assert [o.id for o in objects] == [RULER_ID, KubeID("kube-system", "agent", "DaemonSet")]

    def test_broken_stream_keeps_earlier_documents(self) -> None:
        objects = parse_documents(RULER_DEPLOYMENT + "---\nkind: [broken\n")
        assert [o.id for o in objects] == [RULER_ID]

    def test_empty_stream(self) -> None:
        assert parse_documents("") == []


class TestLoadTree:
    def test_walks_recursively_and_skips_noise(self, tmp_path: Path) -> None:
        (tmp_path / "cortex").mkdir()
        (tmp_path / "cortex" / "ruler-dep.yaml").write_text(RULER_DEPLOYMENT)
        (tmp_path / "cortex" / "ruler-svc.yml").write_text("kind: Service\nmetadata: {name: ruler}\n")
        (tmp_path / "web.json").write_text(
            '{"kind": "Deployment", "metadata": {"name": "web", "namespace": "default"},'
            ' "spec": {"template": {"spec": {"containers": [{"name": "web", "image": "example/web:2"}]}}}}'
        )
        (tmp_path / "README.md").write_text("kind: Deployment\n")
        (tmp_path / "broken.yaml").write_text("kind: [oops\n")
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "ignored.yaml").write_text(_ruler("should-not-load"))

        objects = load_tree(tmp_path)

        assert sorted(o.id for o in objects) == sorted([RULER_ID, KubeID("default", "web", "Deployment")])
        assert image_set(objects) == {RULER_IMAGE: "master-f7f6cf9e", "example/web": "2"}

    def test_missing_root_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="nope"):
            load_tree(tmp_path / "nope")

    def test_empty_root_is_empty(self, tmp_path: Path) -> None:
        assert load_tree(tmp_path) == []


# ---------------------------------------------------------------------------
# Image sets
# ---------------------------------------------------------------------------


class TestImageSet:
    def test_example(self) -> None:
        assert get_image_set(parse_manifest(RULER_DEPLOYMENT)) == {RULER_IMAGE: "master-f7f6cf9e"}

    def test_first_declaration_wins(self) -> None:
        obj = KubeObject(RULER_ID, (Image("app", "v1"), Image("app", "v2"), Image("sidecar", None)))
        assert get_image_set(obj) == {"app": "v1", "sidecar": None}

    def test_first_declaration_wins_across_objects(self) -> None:
        first = KubeObject(KubeID("a", "one", "Deployment"), (Image("app", "v1"),))
        second = KubeObject(KubeID("a", "two", "Deployment"), (Image("app", "v2"),))
        assert image_set([first, second]) == {"app": "v1"}
        assert image_set([second, first]) == {"app": "v2"}

    @given(obj=_kube_objects)
    def test_image_set_has_only_declared_images(self, obj: KubeObject) -> None:
        declared = set(obj.images)
        assert {Image(n, label) for n, label in get_image_set(obj).items()} <= declared
        assert set(get_image_set(obj)) == {i.name for i in obj.images}


# ---------------------------------------------------------------------------
# Diffing
# ---------------------------------------------------------------------------


class TestDiffImages:
    def test_end_to_end_example(self) -> None:
        source = [parse_manifest(RULER_DEPLOYMENT)]
        target = [parse_manifest(_ruler("master-aaaaaaa"))]
        assert diff_images(source, target) == {
            RULER_ID: [ImageChanged(RULER_IMAGE, "master-aaaaaaa", "master-f7f6cf9e")],
        }

    def test_object_only_in_source_is_added(self) -> None:
        assert diff_images([parse_manifest(RULER_DEPLOYMENT)], []) == {
            RULER_ID: [ImageAdded(RULER_IMAGE, "master-f7f6cf9e")],
        }

    def test_object_only_in_target_is_removed(self) -> None:
        assert diff_images([], [parse_manifest(RULER_DEPLOYMENT)]) == {
            RULER_ID: [ImageRemoved(RULER_IMAGE, "master-f7f6cf9e")],
        }

    def test_mixed_changes_within_one_object(self) -> None:
        source = [KubeObject(RULER_ID, (Image("app", "v2"), Image("new-sidecar", "1"), Image("same", "x")))]
        target = [KubeObject(RULER_ID, (Image("app", "v1"), Image("old-sidecar", "9"), Image("same", "x")))]
        assert diff_images(source, target) == {
            RULER_ID: [
                ImageChanged("app", "v1", "v2"),
                ImageAdded("new-sidecar", "1"),
                ImageRemoved("old-sidecar", "9"),
            ],
        }

    def test_label_to_no_label_is_a_change(self) -> None:
        source = [KubeObject(RULER_ID, (Image("app", None),))]
        target = [KubeObject(RULER_ID, (Image("app", "v1"),))]
        assert diff_images(source, target) == {RULER_ID: [ImageChanged("app", "v1", None)]}

    def test_unchanged_objects_are_omitted(self) -> None:
        other = KubeObject(KubeID("cortex", "distributor", "Deployment"), (Image("d", "1"),))
        source = [parse_manifest(RULER_DEPLOYMENT), other]
        target = [parse_manifest(_ruler("master-aaaaaaa")), other]
        assert list(diff_images(source, target)) == [RULER_ID]

    def test_order_of_objects_does_not_matter(self) -> None:
        a = KubeObject(KubeID("ns", "a", "Deployment"), (Image("x", "1"),))
        b = KubeObject(KubeID("ns", "b", "Deployment"), (Image("y", "1"),))
        assert diff_images([a, b], [b, a]) == {}

    @given(env=st.lists(_kube_objects, max_size=6))
    def test_identical_environments_have_no_diff(self, env: list[KubeObject]) -> None:
        assert diff_images(env, env) == {}

    @given(kube_id=_kube_ids, image=_images)
    def test_detects_added_images(self, kube_id: KubeID, image: Image) -> None:
        source = [KubeObject(kube_id, (image,))]
        target = [KubeObject(kube_id, ())]
        assert diff_images(source, target) == {kube_id: [ImageAdded(image.name, image.label)]}

    @given(kube_id=_kube_ids, image=_images)
    def test_detects_removed_images(self, kube_id: KubeID, image: Image) -> None:
        source = [KubeObject(kube_id, ())]
        target = [KubeObject(kube_id, (image,))]
        assert diff_images(source, target) == {kube_id: [ImageRemoved(image.name, image.label)]}

    @given(kube_id=_kube_ids, image=_images, other_label=_labels)
    def test_detects_changed_images(self, kube_id: KubeID, image: Image, other_label: str | None) -> None:
        assume(other_label != image.label)
        source = [KubeObject(kube_id, (image,))]
        target = [KubeObject(kube_id, (Image(image.name, other_label),))]
        assert diff_images(source, target) == {kube_id: [ImageChanged(image.name, other_label, image.label)]}
