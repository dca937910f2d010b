"""
Shared engine types.

CONTENT_FIELDS is the single enumeration of item content. Every layer
(base, custom, override) and the EffectiveItem projection are built from
this tuple, so adding a field here is the only way to make it overridable.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

CONTENT_FIELDS = (
    "name",
    "age_group",
    "brief_instruction",
    "instructions",
    "instructions_json",
    "instructions_html",
    "highlighted_text",
    "link_to_page",
)

SOURCE_BASE = "base"
SOURCE_OVERRIDE = "override"
SOURCE_CUSTOM = "custom"


@dataclass(frozen=True)
class EffectiveItem:
    """One item as a surgery sees it after all layers are merged."""

    id: str
    slug: str
    name: str
    age_group: str
    source: str
    brief_instruction: str | None = None
    instructions: str | None = None
    instructions_json: str | None = None
    instructions_html: str | None = None
    highlighted_text: str | None = None
    link_to_page: str | None = None
    base_item_id: str | None = None
    is_hidden: bool = False
    is_enabled: bool = True

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.name.casefold(), self.id)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EffectiveItem":
        return cls(**data)


@dataclass
class LayerSnapshot:
    """Rows read for one surgery inside a single transaction.

    ``enablement`` maps item id → is_enabled; missing ids are enabled.
    ``overrides`` maps base item id → override row.
    """

    base_items: list = field(default_factory=list)
    custom_items: list = field(default_factory=list)
    overrides: dict = field(default_factory=dict)
    enablement: dict = field(default_factory=dict)
