"""
URL configuration for the Stockwise backend.

All API routes live under /api/v1/; the Django admin is kept at /admin/.
"""
from django.contrib import admin
from django.urls import path, include

admin.site.site_header = "Stockwise Administration"
admin.site.site_title = "Stockwise Admin Portal"
admin.site.index_title = "Subscriptions and Coupons"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('backend.core.urls')),
    path('api/v1/', include('backend.subscriptions.urls')),
    path('api/v1/', include('backend.coupons.urls')),
]
