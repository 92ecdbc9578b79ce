from django.urls import path
from .views import plan_list, current_subscription, coupon_preview, checkout

urlpatterns = [
    path('subscription/plans/', plan_list, name='subscription-plan-list'),
    path('subscription/current/', current_subscription, name='subscription-current'),
    path('subscription/coupons/preview/', coupon_preview, name='subscription-coupon-preview'),
    path('subscription/checkout/', checkout, name='subscription-checkout'),
]
