"""Authorization collaborator consulted by the engine."""

from __future__ import annotations

from typing import Iterable, Mapping, Optional, Protocol


class AuthorizationPolicy(Protocol):
    """Answers whether an actor holds administrator capability in an org.

    The engine treats the answer as an opaque boolean and never inspects
    role names.
    """

    async def has_admin_capability(self, actor: Optional[str], org_id: str) -> bool:
        """Return ``True`` if ``actor`` may perform admin-only operations."""


class StaticAdminPolicy(AuthorizationPolicy):
    """Grant admin capability to a fixed set of actors.

    ``admins`` applies to every org; ``org_admins`` adds per-org grants.
    """

    def __init__(
        self,
        admins: Iterable[str] = (),
        org_admins: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> None:
        self._admins = frozenset(admins)
        self._org_admins = {
            org: frozenset(actors) for org, actors in (org_admins or {}).items()
        }

    async def has_admin_capability(self, actor: Optional[str], org_id: str) -> bool:
        if actor is None:
            return False
        return actor in self._admins or actor in self._org_admins.get(
            org_id, frozenset()
        )
