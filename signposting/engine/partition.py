"""
Clinical-review partitioning.

Splits a resolved view into pending / approved / changes-required using
the surgery's review rows. Rows are keyed by (item id, age group); an item
without a row is PENDING, so the three buckets always add up to ``all``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

REVIEW_PENDING = "PENDING"
REVIEW_APPROVED = "APPROVED"
REVIEW_CHANGES_REQUIRED = "CHANGES_REQUIRED"
REVIEW_STATES = (REVIEW_PENDING, REVIEW_APPROVED, REVIEW_CHANGES_REQUIRED)


def review_key(item_id: str, age_group: str | None) -> tuple[str, str]:
    return (item_id, age_group or "")


@dataclass
class ReviewPartition:
    all: list = field(default_factory=list)
    pending: list = field(default_factory=list)
    approved: list = field(default_factory=list)
    changes_required: list = field(default_factory=list)

    def counts(self) -> dict:
        return {
            "all": len(self.all),
            "pending": len(self.pending),
            "approved": len(self.approved),
            "changes_required": len(self.changes_required),
        }

    def to_dict(self, include_items: bool = False) -> dict:
        data = {"counts": self.counts()}
        if include_items:
            data.update({
                "pending": [i.id for i in self.pending],
                "approved": [i.id for i in self.approved],
                "changes_required": [i.id for i in self.changes_required],
            })
        return data


def partition(items, statuses: dict) -> ReviewPartition:
    """Partition ``items`` by review state.

    Args:
        items: EffectiveItem list (any object with ``id`` and ``age_group``).
        statuses: mapping review_key → state string. Unknown states count as
            PENDING so a bad row can never drop an item out of the totals.
    """
    result = ReviewPartition()
    for item in items:
        result.all.append(item)
        state = statuses.get(review_key(item.id, item.age_group), REVIEW_PENDING)
        if state == REVIEW_APPROVED:
            result.approved.append(item)
        elif state == REVIEW_CHANGES_REQUIRED:
            result.changes_required.append(item)
        else:
            result.pending.append(item)
    return result
