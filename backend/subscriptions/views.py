from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, AllowAny
from backend.core.utils import create_audit_log
from backend.coupons.errors import CouponError
from backend.coupons.views import coupon_error_response, validation_error_response
from .models import Plan, UserSubscription
from .serializers import (
    PlanSerializer, UserSubscriptionSerializer, SubscriptionPaymentSerializer,
    CheckoutSerializer, CouponPreviewSerializer
)
from . import services


@api_view(['GET'])
@permission_classes([AllowAny])
def plan_list(request):
    """Active plans, cheapest first"""
    plans = Plan.objects.filter(is_active=True).order_by('price', 'code')
    return Response(PlanSerializer(plans, many=True).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def current_subscription(request):
    """The caller's subscription"""
    subscription = UserSubscription.objects.select_related('plan').filter(user=request.user).first()
    if subscription is None:
        return Response({'error': 'No subscription found'}, status=status.HTTP_404_NOT_FOUND)
    return Response(UserSubscriptionSerializer(subscription).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def coupon_preview(request):
    """Show what a coupon would take off a plan without redeeming it"""
    serializer = CouponPreviewSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    plan = serializer.validated_data['plan']
    try:
        coupon, discount = services.preview_coupon(serializer.validated_data['code'], plan, request.user)
    except CouponError as e:
        return coupon_error_response(e)

    return Response({
        'code': coupon.code,
        'type': coupon.type,
        'plan': plan.code,
        'originalAmount': str(discount.original_amount),
        'discountAmount': str(discount.discount_amount),
        'finalAmount': str(discount.final_amount),
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def checkout(request):
    """Create a plan purchase, redeeming a coupon when one is supplied"""
    serializer = CheckoutSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    plan = serializer.validated_data['plan']
    coupon_code = serializer.validated_data.get('couponCode') or None
    try:
        payment = services.checkout(request.user, plan, coupon_code=coupon_code)
    except CouponError as e:
        return coupon_error_response(e)
    except services.SubscriptionError as e:
        return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

    create_audit_log(
        request=request,
        action='subscription_checkout',
        model_name='SubscriptionPayment',
        object_id=payment.id,
        object_name=plan.name,
        object_reference=payment.order_id,
        changes={
            'amount': str(payment.amount),
            'discount_amount': str(payment.discount_amount),
            'coupon_code': payment.coupon_code,
            'status': payment.status,
        },
    )
    if payment.coupon_code:
        create_audit_log(
            request=request,
            action='coupon_redeem',
            model_name='Coupon',
            object_id=payment.coupon_usage.coupon_id,
            object_name=payment.coupon_code,
            object_reference=payment.order_id,
            changes={'discount_amount': str(payment.discount_amount)},
        )
    if payment.status == 'success':
        subscription = UserSubscription.objects.get(user=request.user)
        create_audit_log(
            request=request,
            action='subscription_activate',
            model_name='UserSubscription',
            object_id=subscription.id,
            object_name=plan.name,
            object_reference=payment.order_id,
            changes={'plan': plan.code, 'expires_at': str(subscription.expires_at) if subscription.expires_at else None},
        )

    return Response({
        'payment': SubscriptionPaymentSerializer(payment).data,
        'activated': payment.status == 'success',
    }, status=status.HTTP_201_CREATED)
