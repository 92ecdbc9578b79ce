from django.contrib import admin
from .models import Plan, UserSubscription, SubscriptionPayment


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = ['name', 'code', 'price', 'duration_days', 'is_active', 'updated_at']
    list_filter = ['is_active']
    ordering = ['price', 'code']
    readonly_fields = ['created_at', 'updated_at']


@admin.register(UserSubscription)
class UserSubscriptionAdmin(admin.ModelAdmin):
    list_display = ['user', 'plan', 'status', 'started_at', 'expires_at', 'updated_by_admin']
    list_filter = ['status', 'plan', 'updated_by_admin']
    search_fields = ['user__username', 'user__email']
    readonly_fields = ['created_at', 'updated_at']


@admin.register(SubscriptionPayment)
class SubscriptionPaymentAdmin(admin.ModelAdmin):
    list_display = ['order_id', 'user', 'plan', 'original_amount', 'discount_amount', 'amount',
                    'coupon_code', 'status', 'created_at']
    list_filter = ['status', 'plan', 'created_at']
    search_fields = ['order_id', 'user__username', 'coupon_code']
    ordering = ['-created_at']
    readonly_fields = ['order_id', 'original_amount', 'discount_amount', 'amount', 'coupon_code',
                       'created_at', 'updated_at']
