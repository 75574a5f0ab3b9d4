"""Read interface of the pack catalog."""

from __future__ import annotations

from typing import Iterable, Protocol

from ..contracts import PackTemplate


class PackCatalog(Protocol):
    """Read-only library of workflow blueprints grouped by pack key."""

    def pack_keys(self) -> list[str]:
        """Return every known pack key."""

    def list_pack_templates(self, pack_keys: Iterable[str]) -> list[PackTemplate]:
        """Return the templates of ``pack_keys`` in pack order."""

    def get_template(self, template_id: str) -> PackTemplate | None:
        """Look up one template by its ``pack:type:key`` identity."""
