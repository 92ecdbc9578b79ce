from django.urls import path
from .views import coupon_list_create, coupon_detail, coupon_toggle, coupon_usage

urlpatterns = [
    # Admin coupon endpoints
    path('admin/coupons/', coupon_list_create, name='coupon-list-create'),
    path('admin/coupons/<int:pk>/', coupon_detail, name='coupon-detail'),
    path('admin/coupons/<int:pk>/toggle/', coupon_toggle, name='coupon-toggle'),
    path('admin/coupons/<int:pk>/usage/', coupon_usage, name='coupon-usage'),
]
