from rest_framework import serializers
from .models import Plan, UserSubscription, SubscriptionPayment


class PlanSerializer(serializers.ModelSerializer):
    class Meta:
        model = Plan
        fields = [
            'id', 'code', 'name', 'duration_days', 'price', 'max_warehouses', 'max_items',
            'backup_access', 'reports_access', 'accounting_access', 'advanced_inventory'
        ]


class UserSubscriptionSerializer(serializers.ModelSerializer):
    plan = PlanSerializer(read_only=True)
    is_current = serializers.SerializerMethodField()

    class Meta:
        model = UserSubscription
        fields = ['id', 'plan', 'status', 'is_current', 'started_at', 'expires_at']

    def get_is_current(self, obj):
        return obj.is_current()


class SubscriptionPaymentSerializer(serializers.ModelSerializer):
    plan = serializers.CharField(source='plan.code', read_only=True)

    class Meta:
        model = SubscriptionPayment
        fields = [
            'id', 'order_id', 'plan', 'original_amount', 'discount_amount', 'amount',
            'currency', 'coupon_code', 'status', 'created_at'
        ]


class CheckoutSerializer(serializers.Serializer):
    plan = serializers.SlugRelatedField(slug_field='code', queryset=Plan.objects.filter(is_active=True))
    couponCode = serializers.CharField(max_length=20, required=False, allow_blank=True)


class CouponPreviewSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=20)
    plan = serializers.SlugRelatedField(slug_field='code', queryset=Plan.objects.filter(is_active=True))
