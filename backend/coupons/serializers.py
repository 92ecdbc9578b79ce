from decimal import Decimal

from django.utils import timezone
from rest_framework import serializers

from backend.subscriptions.models import Plan
from .models import Coupon, CouponUsage, coupon_code_validator


class UsageLimitSerializer(serializers.Serializer):
    total = serializers.IntegerField(source='usage_limit_total', min_value=1, required=False, allow_null=True)
    perUser = serializers.BooleanField(source='usage_limit_per_user', required=False, default=False)


class UsageLimitUpdateSerializer(UsageLimitSerializer):
    """Leaves perUser untouched when the request omits it"""
    perUser = serializers.BooleanField(source='usage_limit_per_user', required=False)


class CouponSerializer(serializers.ModelSerializer):
    code = serializers.CharField(max_length=20)
    value = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0'),
                                     required=False, allow_null=True)
    applicablePlans = serializers.ListField(
        source='applicable_plans',
        child=serializers.ChoiceField(choices=Plan.PLAN_CODE_CHOICES),
        allow_empty=False,
    )
    expiryDate = serializers.DateTimeField(source='expiry_date', required=False, allow_null=True)
    usageLimit = UsageLimitSerializer(source='*', required=False)
    isActive = serializers.BooleanField(source='is_active', required=False)
    usedCount = serializers.IntegerField(source='used_count', read_only=True)
    createdBy = serializers.CharField(source='created_by.username', read_only=True, default=None)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Coupon
        fields = [
            'id', 'code', 'type', 'value', 'applicablePlans', 'expiryDate', 'usageLimit',
            'isActive', 'usedCount', 'description', 'createdBy', 'createdAt', 'updatedAt'
        ]

    def validate_code(self, value):
        code = value.strip().upper()
        coupon_code_validator(code)
        if Coupon.objects.filter(code=code).exists():
            raise serializers.ValidationError('Coupon code already exists')
        return code

    def validate_applicablePlans(self, value):
        # keep first-seen order, drop repeats
        return list(dict.fromkeys(value))

    def validate_expiryDate(self, value):
        if value is not None and value <= timezone.now():
            raise serializers.ValidationError('Expiry date must be in the future')
        return value

    def validate(self, attrs):
        coupon_type = attrs.get('type')
        value = attrs.get('value')
        if coupon_type == Coupon.TYPE_FREE_PLAN:
            attrs['value'] = Decimal('0.00')
        elif not value:
            raise serializers.ValidationError({'value': 'Value is required for percentage and flat coupons'})
        elif coupon_type == Coupon.TYPE_PERCENTAGE and not (1 <= value <= 100):
            raise serializers.ValidationError({'value': 'Percentage value must be between 1 and 100'})
        return attrs

    def create(self, validated_data):
        return Coupon.objects.create(**validated_data)


class CouponUpdateSerializer(serializers.ModelSerializer):
    """Mutable coupon fields; code and type are fixed at creation"""
    value = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0'), required=False)
    expiryDate = serializers.DateTimeField(source='expiry_date', required=False, allow_null=True)
    usageLimit = UsageLimitUpdateSerializer(source='*', required=False)
    isActive = serializers.BooleanField(source='is_active', required=False)

    class Meta:
        model = Coupon
        fields = ['value', 'expiryDate', 'usageLimit', 'isActive', 'description']

    def validate_expiryDate(self, value):
        if value is not None and value <= timezone.now():
            raise serializers.ValidationError('Expiry date must be in the future')
        return value

    def validate(self, attrs):
        coupon = self.instance
        if 'value' in attrs:
            value = attrs['value']
            if coupon.type == Coupon.TYPE_FREE_PLAN:
                attrs['value'] = Decimal('0.00')
            elif not value:
                raise serializers.ValidationError({'value': 'Value is required for percentage and flat coupons'})
            elif coupon.type == Coupon.TYPE_PERCENTAGE and not (1 <= value <= 100):
                raise serializers.ValidationError({'value': 'Percentage value must be between 1 and 100'})

        total = attrs.get('usage_limit_total', coupon.usage_limit_total)
        per_user = attrs.get('usage_limit_per_user', coupon.usage_limit_per_user)
        if total is not None and not per_user and total < coupon.used_count:
            raise serializers.ValidationError({
                'usageLimit': f'Usage limit cannot be below the {coupon.used_count} redemptions already made'
            })
        return attrs


class CouponUsageSerializer(serializers.ModelSerializer):
    couponCode = serializers.CharField(source='coupon_code', read_only=True)
    plan = serializers.CharField(source='plan.code', read_only=True)
    userId = serializers.IntegerField(source='user_id', read_only=True)
    userName = serializers.SerializerMethodField()
    userEmail = serializers.CharField(source='user.email', read_only=True, default=None)
    companyId = serializers.IntegerField(source='company_id', read_only=True)
    companyName = serializers.CharField(source='company.name', read_only=True, default=None)
    orderId = serializers.CharField(source='payment.order_id', read_only=True, default=None)
    originalAmount = serializers.DecimalField(source='original_amount', max_digits=10, decimal_places=2, read_only=True)
    discountAmount = serializers.DecimalField(source='discount_amount', max_digits=10, decimal_places=2, read_only=True)
    finalAmount = serializers.DecimalField(source='final_amount', max_digits=10, decimal_places=2, read_only=True)
    appliedAt = serializers.DateTimeField(source='applied_at', read_only=True)

    class Meta:
        model = CouponUsage
        fields = [
            'id', 'couponCode', 'plan', 'userId', 'userName', 'userEmail', 'companyId', 'companyName',
            'orderId', 'originalAmount', 'discountAmount', 'finalAmount', 'appliedAt'
        ]

    def get_userName(self, obj):
        return obj.user.get_display_name() if obj.user else None
