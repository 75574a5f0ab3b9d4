import pytest
from pydantic import ValidationError

from stepwise.catalog import (
    InMemoryPackCatalog,
    get_catalog,
    load_builtin_packs,
    load_pack_file,
    parse_pack,
)
from stepwise.config import StepwiseConfig
from stepwise.constants import DEFAULT_EDITABLE_FIELDS
from stepwise.contracts import StepType, WorkflowType


def test_fixture_packs_load(catalog):
    assert catalog.pack_keys() == ["generic", "program"]
    assert len(catalog.list_pack_templates(["generic"])) == 5
    assert len(catalog.list_pack_templates(["program", "generic"])) == 7

    template = catalog.get_template("generic:request:purchase_request")
    assert template is not None
    assert [s.step_type for s in template.steps] == [
        StepType.FORM,
        StepType.APPROVAL,
        StepType.TASK,
    ]
    assert template.editable_fields == list(DEFAULT_EDITABLE_FIELDS)
    assert not template.is_locked

    locked = catalog.get_template("program:chair_recruitment:chair_search")
    assert locked.is_locked
    assert locked.editable_fields == ["name", "description"]


def test_unknown_pack_and_template(catalog):
    assert catalog.list_pack_templates(["nope"]) == []
    assert catalog.get_template("generic:request:nope") is None


def test_builtin_packs_are_valid():
    templates = load_builtin_packs()
    catalog = InMemoryPackCatalog(templates)
    assert set(catalog.pack_keys()) == {"generic", "convene"}
    for template in templates:
        assert template.steps, template.id
    convene = catalog.list_pack_templates(["convene"])
    assert {t.workflow_type for t in convene} == {
        WorkflowType.CHAIR_RECRUITMENT,
        WorkflowType.CHAIR_ONBOARDING,
    }
    assert all(t.is_locked for t in convene)


def test_steps_are_sorted_and_must_be_contiguous():
    pack = parse_pack(
        {
            "pack_key": "x",
            "templates": [
                {
                    "template_key": "t",
                    "workflow_type": "review",
                    "name": "T",
                    "steps": [
                        {"step_type": "task_step", "title": "b", "sort_order": 2},
                        {"step_type": "form_step", "title": "a", "sort_order": 1},
                    ],
                }
            ],
        }
    )
    assert [s.title for s in pack[0].steps] == ["a", "b"]

    with pytest.raises(ValidationError):
        parse_pack(
            {
                "pack_key": "x",
                "templates": [
                    {
                        "template_key": "t",
                        "workflow_type": "review",
                        "name": "T",
                        "steps": [
                            {"step_type": "task_step", "title": "a", "sort_order": 1},
                            {"step_type": "task_step", "title": "b", "sort_order": 3},
                        ],
                    }
                ],
            }
        )


def test_duplicate_template_ids_rejected(catalog):
    template = catalog.get_template("generic:review:annual_review")
    with pytest.raises(ValueError):
        InMemoryPackCatalog([template, template])


def test_resolve_templates_falls_back_to_generic(catalog):
    program = catalog.resolve_templates(WorkflowType.ONBOARDING, "program")
    assert [t.id for t in program] == ["program:onboarding:member_onboarding"]

    fallback = catalog.resolve_templates("review", "program")
    assert [t.id for t in fallback] == ["generic:review:annual_review"]

    assert catalog.resolve_templates("launch", "program") == []


def test_get_catalog_adds_configured_pack_paths(tmp_path):
    pack_file = tmp_path / "extra.yaml"
    pack_file.write_text(
        """
pack_key: extra
templates:
  - template_key: kickoff
    workflow_type: launch
    name: Kickoff
    steps:
      - {step_type: task_step, title: Plan, sort_order: 0}
"""
    )
    assert [t.id for t in load_pack_file(pack_file)] == ["extra:launch:kickoff"]

    catalog = get_catalog(StepwiseConfig(pack_paths=[str(tmp_path)]))
    assert "extra" in catalog.pack_keys()
    assert "generic" in catalog.pack_keys()
