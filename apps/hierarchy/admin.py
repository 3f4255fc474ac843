from django.contrib import admin

from apps.hierarchy.models import Plant, Area, Sector, Asset


@admin.register(Plant)
class PlantAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'created_at']
    search_fields = ['name']


@admin.register(Area)
class AreaAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'plant']
    list_filter = ['plant']
    search_fields = ['name']


@admin.register(Sector)
class SectorAdmin(admin.ModelAdmin):
    list_display = ['id', 'name', 'area']
    list_filter = ['area__plant']
    search_fields = ['name']


@admin.register(Asset)
class AssetAdmin(admin.ModelAdmin):
    list_display = ['id', 'tag', 'name', 'plant', 'area', 'sector']
    list_filter = ['plant']
    search_fields = ['name', 'tag']
