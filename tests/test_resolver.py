"""
Tests: effective-view resolver (pure, no database).

Rows are plain namespaces carrying the same attributes as the ORM models,
so these tests exercise merge precedence, visibility and ordering only.
"""

from types import SimpleNamespace

import pytest

from signposting.engine.patch import INHERIT, is_set, parse_patch
from signposting.engine.resolver import FIELD_MERGERS, merge_content, orphaned_override_ids, resolve_items
from signposting.engine.types import CONTENT_FIELDS, LayerSnapshot
from signposting.core.exceptions import ValidationError


# ── Helpers ──────────────────────────────────────────────────────────────────


def _content(name, **fields):
    data = {f: None for f in CONTENT_FIELDS}
    data.update(name=name, age_group="Adult")
    data.update(fields)
    return data


def _base(id_, name, **fields):
    return SimpleNamespace(id=id_, slug=name.lower().replace(" ", "-"), **_content(name, **fields))


def _custom(id_, name, **fields):
    return SimpleNamespace(id=id_, slug=name.lower().replace(" ", "-"), **_content(name, **fields))


def _override(base_id, is_hidden=False, **fields):
    data = {f: None for f in CONTENT_FIELDS}
    data.update(fields)
    return SimpleNamespace(base_item_id=base_id, is_hidden=is_hidden, **data)


# ── Tests ─────────────────────────────────────────────────────────────────────


def test_merge_table_covers_every_content_field():
    assert tuple(FIELD_MERGERS) == CONTENT_FIELDS


def test_base_items_pass_through_with_base_source():
    snap = LayerSnapshot(base_items=[_base("b1", "Earache", brief_instruction="See GP")])

    items = resolve_items(snap)

    assert len(items) == 1
    assert items[0].source == "base"
    assert items[0].brief_instruction == "See GP"
    assert items[0].base_item_id == "b1"
    assert items[0].is_enabled is True


def test_override_field_wins_and_unset_fields_inherit():
    base = _base("b1", "Earache", brief_instruction="See GP", instructions="Base text")
    snap = LayerSnapshot(
        base_items=[base],
        overrides={"b1": _override("b1", brief_instruction="Book with nurse")},
    )

    item = resolve_items(snap)[0]

    assert item.source == "override"
    assert item.brief_instruction == "Book with nurse"
    assert item.instructions == "Base text"


def test_blank_override_field_inherits_live_base_value():
    base = _base("b1", "Earache", brief_instruction="See GP")
    snap = LayerSnapshot(base_items=[base], overrides={"b1": _override("b1", brief_instruction="   ")})

    item = resolve_items(snap)[0]

    assert item.brief_instruction == "See GP"
    assert item.source == "base"


def test_hidden_override_drops_item_from_default_view_only():
    snap = LayerSnapshot(
        base_items=[_base("b1", "Earache"), _base("b2", "Cough")],
        overrides={"b1": _override("b1", is_hidden=True)},
    )

    default_view = resolve_items(snap)
    full_view = resolve_items(snap, include_disabled=True)

    assert [i.id for i in default_view] == ["b2"]
    hidden = next(i for i in full_view if i.id == "b1")
    assert hidden.is_hidden is True
    assert hidden.is_enabled is False


def test_disabled_enablement_behaves_like_hidden_for_visibility():
    snap = LayerSnapshot(
        base_items=[_base("b1", "Earache")],
        custom_items=[_custom("c1", "Travel Vaccination Advice")],
        enablement={"b1": False, "c1": False},
    )

    assert resolve_items(snap) == []
    full = resolve_items(snap, include_disabled=True)
    assert {i.id for i in full} == {"b1", "c1"}
    assert all(i.is_enabled is False for i in full)


def test_custom_items_are_never_overridden():
    snap = LayerSnapshot(
        custom_items=[_custom("c1", "Travel Vaccination Advice", brief_instruction="Travel clinic")],
        overrides={"c1": _override("c1", brief_instruction="Should be ignored")},
    )

    items = resolve_items(snap)

    assert len(items) == 1
    assert items[0].source == "custom"
    assert items[0].brief_instruction == "Travel clinic"
    assert items[0].base_item_id is None


def test_orphaned_override_is_ignored():
    snap = LayerSnapshot(
        base_items=[_base("b1", "Earache")],
        overrides={"gone": _override("gone", name="Ghost")},
    )

    items = resolve_items(snap)

    assert [i.id for i in items] == ["b1"]
    assert orphaned_override_ids(snap) == ["gone"]


def test_ordering_is_case_insensitive_with_id_tiebreak():
    snap = LayerSnapshot(
        base_items=[_base("b2", "cough"), _base("b1", "Cough"), _base("b3", "Abdominal Pain")],
        custom_items=[_custom("a0", "back pain")],
    )

    items = resolve_items(snap)

    assert [i.id for i in items] == ["b3", "a0", "b1", "b2"]


def test_resolution_is_idempotent():
    snap = LayerSnapshot(
        base_items=[_base("b1", "Earache"), _base("b2", "Cough")],
        custom_items=[_custom("c1", "Travel Vaccination Advice")],
        overrides={"b2": _override("b2", name="Persistent cough")},
    )

    first = resolve_items(snap)
    second = resolve_items(snap)

    assert first == second
    assert [i.to_dict() for i in first] == [i.to_dict() for i in second]


def test_merge_content_without_override_copies_base():
    base = _base("b1", "Earache", link_to_page="https://example.org")
    assert merge_content(base)["link_to_page"] == "https://example.org"


# ── Patch parsing ────────────────────────────────────────────────────────────


def test_parse_patch_normalises_blank_to_inherit():
    patch = parse_patch({"name": "Ear pain", "brief_instruction": "", "instructions": None})

    assert patch["name"] == "Ear pain"
    assert patch["brief_instruction"] is INHERIT
    assert patch["instructions"] is INHERIT
    assert not is_set(INHERIT)


def test_parse_patch_rejects_unknown_fields():
    with pytest.raises(ValidationError) as exc:
        parse_patch({"slug": "new-slug"})
    assert "slug" in exc.value.details


def test_parse_patch_rejects_bad_age_group():
    with pytest.raises(ValidationError) as exc:
        parse_patch({"age_group": "Teen"})
    assert "age_group" in exc.value.details
