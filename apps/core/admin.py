"""
Django admin configuration for core app.
"""
from django.conf import settings
from django.contrib import admin


admin.site.site_header = f"{settings.PLATFORM_NAME} Administration"
admin.site.site_title = f"{settings.PLATFORM_NAME} Admin"
admin.site.index_title = "Access control and audit"
