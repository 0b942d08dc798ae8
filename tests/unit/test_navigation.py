"""Tests for path navigation into bundles."""

import pytest

from fhirval.navigation.navigator import PathNavigator, SegmentKind, parse_segments, split_path


@pytest.fixture
def navigator():
    return PathNavigator()


@pytest.fixture
def screening_bundle(bundle_of):
    root = bundle_of(
        {"resourceType": "Patient", "id": "p1", "name": [{"family": "Tan"}]},
        {
            "resourceType": "Observation",
            "id": "o1",
            "code": {"coding": [{"code": "SCREEN"}]},
            "component": [
                {"code": {"coding": [{"code": "Q1"}]}, "valueString": "yes"},
                {"code": {"coding": [{"code": "Q2"}]}, "valueString": "no"},
            ],
        },
    )
    root["entry"][1]["fullUrl"] = "urn:uuid:obs-1"
    return root


class TestPathParsing:

    def test_split_keeps_where_attached(self):
        assert split_path("Observation.component.where(code.coding.code='Q1').valueString") == [
            "Observation", "component.where(code.coding.code='Q1')", "valueString",
        ]

    def test_segment_kinds(self):
        segments = parse_segments("entry('urn:uuid:1').resource.name[2]")

        assert [s.kind for s in segments] == [
            SegmentKind.ENTRY_REFERENCE, SegmentKind.PROPERTY, SegmentKind.ARRAY_INDEX,
        ]
        assert segments[0].reference == "urn:uuid:1"
        assert segments[2].index == 2


class TestNavigate:

    def test_resource_path(self, navigator, screening_bundle):
        info = navigator.navigate(screening_bundle, "Patient.name[0].family")

        assert info.exists is True
        assert info.pointer == "/entry/0/resource/name/0/family"
        assert info.breadcrumbs == ["Bundle", "entry[0]", "Patient", "name[0]", "family"]
        assert info.missing_ancestors == []

    def test_missing_array_item(self, navigator, bundle_of):
        root = bundle_of({"resourceType": "Patient", "name": []})

        info = navigator.navigate(root, "name[0].family", resource_type="Patient", entry_index=0)

        assert info.exists is False
        assert "name[0]" in info.missing_ancestors

    def test_entry_index_hint(self, navigator, bundle_of):
        root = bundle_of(
            {"resourceType": "Patient", "gender": "male"},
            {"resourceType": "Patient", "gender": "female"},
        )

        info = navigator.navigate(root, "gender", resource_type="Patient", entry_index=1)

        assert info.pointer == "/entry/1/resource/gender"

    def test_entry_index_is_honored_over_type_hint(self, navigator, bundle_of):
        root = bundle_of(
            {"resourceType": "Patient", "gender": "male"},
            {"resourceType": "Observation", "status": "final"},
        )

        info = navigator.navigate(root, "Patient.gender", entry_index=1)

        assert info.exists is False
        assert info.pointer == "/entry/1/resource"
        assert info.breadcrumbs == ["Bundle", "entry[1]", "Observation"]
        assert info.missing_ancestors == ["gender"]

    def test_entry_index_out_of_range(self, navigator, bundle_of):
        root = bundle_of({"resourceType": "Patient", "gender": "male"})

        info = navigator.navigate(root, "gender", resource_type="Patient", entry_index=3)

        assert info.exists is False
        assert info.pointer == ""
        assert info.missing_ancestors == ["entry[3]"]

    def test_where_on_component(self, navigator, screening_bundle):
        info = navigator.navigate(
            screening_bundle, "Observation.component.where(code.coding.code='Q2').valueString",
        )

        assert info.exists is True
        assert info.pointer == "/entry/1/resource/component/1/valueString"
        assert "component[1]" in info.breadcrumbs

    def test_where_without_match(self, navigator, screening_bundle):
        info = navigator.navigate(
            screening_bundle, "Observation.component.where(code.coding.code='Q9').valueString",
        )

        assert info.exists is False
        assert info.missing_ancestors == ["component.where(code.coding.code='Q9')"]

    def test_entry_by_full_url(self, navigator, screening_bundle):
        info = navigator.navigate(screening_bundle, "Bundle.entry('urn:uuid:obs-1').resource.id")

        assert info.pointer == "/entry/1/resource/id"
        assert info.exists is True

    def test_entry_by_type_and_id(self, navigator, screening_bundle):
        info = navigator.navigate(screening_bundle, "entry('Patient/p1').resource.name")

        assert info.pointer == "/entry/0/resource/name"

    def test_unknown_resource_type(self, navigator, screening_bundle):
        info = navigator.navigate(screening_bundle, "Encounter.status")

        assert info.exists is False
        assert info.missing_ancestors == ["Encounter"]

    def test_non_object_root(self, navigator):
        info = navigator.navigate(["not", "a", "bundle"], "Patient.name")

        assert info.exists is False


class TestNavigatePointer:

    def test_existing_pointer(self, navigator, screening_bundle):
        info = navigator.navigate_pointer(screening_bundle, "/entry/1/resource/component/0/valueString")

        assert info.exists is True
        assert info.breadcrumbs == ["Bundle", "entry[1]", "Observation", "component[0]", "valueString"]

    def test_missing_pointer(self, navigator, screening_bundle):
        info = navigator.navigate_pointer(screening_bundle, "/entry/5/resource")

        assert info.exists is False
        assert info.missing_ancestors == ["entry[5]"]
