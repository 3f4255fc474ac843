"""
Tests for hierarchy scope chains and ancestor lookups.
"""
import pytest

from apps.hierarchy.models import Asset
from apps.hierarchy.services import HierarchyService


@pytest.mark.django_db
class TestScopeChain:

    def test_asset_in_sector_walks_up_to_plant(self, asset, sector, area, plant):
        assert asset.scope_chain() == [
            ('asset', asset.pk),
            ('sector', sector.pk),
            ('area', area.pk),
            ('plant', plant.pk),
        ]

    def test_asset_directly_in_plant_skips_missing_levels(self, plant):
        loose = Asset.objects.create(name='Compressor', plant=plant)

        assert loose.scope_chain() == [('asset', loose.pk), ('plant', plant.pk)]

    def test_service_resolves_chain_by_id(self, sector, area, plant):
        chain = HierarchyService.scope_chain('sector', sector.pk)

        assert chain == [('sector', sector.pk), ('area', area.pk), ('plant', plant.pk)]

    def test_missing_node_yields_only_itself(self, db):
        assert HierarchyService.scope_chain('area', 999999) == [('area', 999999)]

    def test_unknown_scope_is_rejected(self, db):
        with pytest.raises(ValueError):
            HierarchyService.get_node('building', 1)


@pytest.mark.django_db
class TestAncestry:

    def test_ancestors_exclude_the_node(self, area, plant):
        assert HierarchyService.ancestors('area', area.pk) == [('plant', plant.pk)]

    def test_is_within_own_plant(self, sector, plant):
        assert HierarchyService.is_within('sector', sector.pk, 'plant', plant.pk)

    def test_is_not_within_other_plant(self, sector, other_plant):
        assert not HierarchyService.is_within('sector', sector.pk, 'plant', other_plant.pk)

    def test_parent_is_never_within_child(self, area, plant):
        assert not HierarchyService.is_within('plant', plant.pk, 'area', area.pk)
