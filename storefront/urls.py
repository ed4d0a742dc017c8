# storefront/urls.py
"""
Main URL configuration of the storefront project.

1. Django Admin
2. REST API (storefront.presentation), including auth and API docs
"""
from django.contrib import admin
from django.urls import path, include


urlpatterns = [
    path('api/', include('storefront.presentation.urls')),
    path('admin/', admin.site.urls),
]
