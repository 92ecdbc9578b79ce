from django.contrib import admin
from .models import Coupon, CouponUsage


class CouponUsageInline(admin.TabularInline):
    model = CouponUsage
    extra = 0
    can_delete = False
    fields = ['user', 'company', 'plan', 'original_amount', 'discount_amount', 'final_amount', 'applied_at']
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    list_display = ['code', 'type', 'value', 'is_active', 'used_count', 'usage_limit_total',
                    'usage_limit_per_user', 'expiry_date', 'created_at']
    list_filter = ['type', 'is_active', 'usage_limit_per_user', 'expiry_date', 'created_at']
    search_fields = ['code', 'description']
    ordering = ['-created_at']
    readonly_fields = ['used_count', 'created_by', 'created_at', 'updated_at']
    inlines = [CouponUsageInline]

    def get_readonly_fields(self, request, obj=None):
        if obj is not None:
            return self.readonly_fields + ['code', 'type']
        return self.readonly_fields

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.used_count > 0:
            return False
        return super().has_delete_permission(request, obj)


@admin.register(CouponUsage)
class CouponUsageAdmin(admin.ModelAdmin):
    list_display = ['coupon_code', 'user', 'company', 'plan', 'original_amount', 'discount_amount',
                    'final_amount', 'applied_at']
    list_filter = ['plan', 'applied_at']
    search_fields = ['coupon_code', 'user__username', 'user__email', 'company__name']
    ordering = ['-applied_at']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
