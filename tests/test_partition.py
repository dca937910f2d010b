"""Tests: clinical-review partitioning (pure)."""

from types import SimpleNamespace

from signposting.engine.partition import (
    REVIEW_APPROVED,
    REVIEW_CHANGES_REQUIRED,
    REVIEW_PENDING,
    partition,
    review_key,
)


def _item(id_, age_group="Adult"):
    return SimpleNamespace(id=id_, age_group=age_group)


def test_missing_rows_count_as_pending():
    items = [_item("a"), _item("b")]

    result = partition(items, {})

    assert result.counts() == {"all": 2, "pending": 2, "approved": 0, "changes_required": 0}


def test_buckets_always_sum_to_all():
    items = [_item("a"), _item("b"), _item("c"), _item("d")]
    statuses = {
        review_key("a", "Adult"): REVIEW_APPROVED,
        review_key("b", "Adult"): REVIEW_CHANGES_REQUIRED,
        review_key("c", "Adult"): REVIEW_PENDING,
        review_key("d", "Adult"): "SOMETHING_ELSE",
    }

    counts = partition(items, statuses).counts()

    assert counts["pending"] + counts["approved"] + counts["changes_required"] == counts["all"]
    assert counts == {"all": 4, "pending": 2, "approved": 1, "changes_required": 1}


def test_review_rows_are_keyed_by_age_group():
    items = [_item("a", "U5")]
    statuses = {review_key("a", "Adult"): REVIEW_APPROVED}

    result = partition(items, statuses)

    assert [i.id for i in result.pending] == ["a"]


def test_to_dict_lists_item_ids_when_asked():
    result = partition([_item("a")], {review_key("a", "Adult"): REVIEW_APPROVED})

    data = result.to_dict(include_items=True)

    assert data["approved"] == ["a"]
    assert "pending" not in result.to_dict()
