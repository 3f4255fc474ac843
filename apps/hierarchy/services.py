"""
Ancestor lookups over the plant/area/sector/asset tree.
"""
import logging

from apps.hierarchy.models import Plant, Area, Sector, Asset, SCOPES

logger = logging.getLogger(__name__)


MODEL_FOR_SCOPE = {
    Plant.scope: Plant,
    Area.scope: Area,
    Sector.scope: Sector,
    Asset.scope: Asset,
}

RELATED_FOR_SCOPE = {
    Plant.scope: [],
    Area.scope: ['plant'],
    Sector.scope: ['area__plant'],
    Asset.scope: ['sector__area__plant', 'area__plant', 'plant'],
}


class HierarchyService:
    """Resolve scope chains for hierarchy nodes referenced by id."""

    @classmethod
    def get_node(cls, scope: str, scope_id: int):
        """Return the node for ``(scope, scope_id)`` or None if it does not exist."""
        model = MODEL_FOR_SCOPE.get(scope)
        if model is None:
            raise ValueError(f"Unknown scope: {scope}")
        return model.objects.select_related(*RELATED_FOR_SCOPE[scope]).filter(pk=scope_id).first()

    @classmethod
    def scope_chain(cls, scope: str, scope_id: int) -> list:
        """
        Return ``[(scope, id), ...]`` from the node up to its plant.

        A node that no longer exists yields only itself; its grants can
        still be matched exactly but inherit nothing.
        """
        node = cls.get_node(scope, scope_id)
        if node is None:
            logger.debug(
                f"Scope node not found: {scope}.{scope_id}",
                extra={'scope': scope, 'scope_id': scope_id}
            )
            return [(scope, int(scope_id))]
        return node.scope_chain()

    @classmethod
    def ancestors(cls, scope: str, scope_id: int) -> list:
        """Strict ancestors of a node, nearest first."""
        return cls.scope_chain(scope, scope_id)[1:]

    @classmethod
    def is_within(cls, scope: str, scope_id: int, ancestor_scope: str, ancestor_id: int) -> bool:
        """True if ``(ancestor_scope, ancestor_id)`` is the node itself or one of its ancestors."""
        if SCOPES.index(ancestor_scope) > SCOPES.index(scope):
            return False
        return (ancestor_scope, int(ancestor_id)) in cls.scope_chain(scope, scope_id)
