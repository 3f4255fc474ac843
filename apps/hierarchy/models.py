"""
Hierarchy models.

Ids are integers because scoped permission names embed them
(``areas.view.plant.5``).
"""
from django.db import models


SCOPE_PLANT = 'plant'
SCOPE_AREA = 'area'
SCOPE_SECTOR = 'sector'
SCOPE_ASSET = 'asset'

# Ordered from the root of the tree downwards
SCOPES = (SCOPE_PLANT, SCOPE_AREA, SCOPE_SECTOR, SCOPE_ASSET)


class HierarchyNode(models.Model):
    """Fields and behaviour shared by every level of the tree."""

    scope = None

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ['name']

    def __str__(self):
        return self.name

    def parent(self):
        return None

    def scope_chain(self):
        """
        Return ``[(scope, id), ...]`` from this node up to its plant.

        Levels an asset skips (an asset placed directly in an area) are
        simply absent from the chain.
        """
        chain = [(self.scope, self.pk)]
        node = self.parent()
        while node is not None:
            chain.append((node.scope, node.pk))
            node = node.parent()
        return chain


class Plant(HierarchyNode):
    scope = SCOPE_PLANT

    class Meta(HierarchyNode.Meta):
        db_table = 'hierarchy_plants'


class Area(HierarchyNode):
    scope = SCOPE_AREA

    plant = models.ForeignKey(Plant, on_delete=models.CASCADE, related_name='areas')

    class Meta(HierarchyNode.Meta):
        db_table = 'hierarchy_areas'

    def parent(self):
        return self.plant


class Sector(HierarchyNode):
    scope = SCOPE_SECTOR

    area = models.ForeignKey(Area, on_delete=models.CASCADE, related_name='sectors')

    class Meta(HierarchyNode.Meta):
        db_table = 'hierarchy_sectors'

    def parent(self):
        return self.area


class Asset(HierarchyNode):
    """An asset (equipment/machine) sits in a sector, an area or directly in a plant."""

    scope = SCOPE_ASSET

    tag = models.CharField(max_length=100, blank=True, default='')
    plant = models.ForeignKey(Plant, on_delete=models.CASCADE, related_name='assets')
    area = models.ForeignKey(Area, on_delete=models.CASCADE, related_name='assets', null=True, blank=True)
    sector = models.ForeignKey(Sector, on_delete=models.CASCADE, related_name='assets', null=True, blank=True)

    class Meta(HierarchyNode.Meta):
        db_table = 'hierarchy_assets'

    def parent(self):
        return self.sector or self.area or self.plant
