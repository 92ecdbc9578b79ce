from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, IsAdminUser
from backend.core.utils import create_audit_log
from .errors import CouponError
from .filters import CouponFilter
from .models import Coupon
from .serializers import CouponSerializer, CouponUpdateSerializer, CouponUsageSerializer
from . import services


def coupon_error_response(error):
    return Response(error.as_dict(), status=error.http_status)


def validation_error_response(errors):
    return coupon_error_response(CouponError(CouponError.VALIDATION, details=errors))


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsAdminUser])
def coupon_list_create(request):
    """List coupons (newest first) or create a new coupon"""
    if request.method == 'GET':
        queryset = Coupon.objects.select_related('created_by').order_by('-created_at', '-id')
        coupon_filter = CouponFilter(request.query_params, queryset=queryset)
        if not coupon_filter.is_valid():
            return validation_error_response(coupon_filter.errors)
        serializer = CouponSerializer(coupon_filter.qs, many=True)
        return Response(serializer.data)
    else:  # POST
        serializer = CouponSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        coupon = serializer.save(created_by=request.user)
        create_audit_log(
            request=request,
            action='create',
            model_name='Coupon',
            object_id=coupon.id,
            object_name=coupon.code,
            changes={'type': coupon.type, 'value': str(coupon.value), 'applicable_plans': coupon.applicable_plans},
        )
        return Response(CouponSerializer(coupon).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated, IsAdminUser])
def coupon_detail(request, pk):
    """Retrieve, update or delete a coupon"""
    try:
        coupon = services.get_coupon(pk)
    except CouponError as e:
        return coupon_error_response(e)

    if request.method == 'GET':
        return Response(CouponSerializer(coupon).data)
    elif request.method in ('PUT', 'PATCH'):
        serializer = CouponUpdateSerializer(coupon, data=request.data, partial=request.method == 'PATCH')
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        coupon = serializer.save()
        create_audit_log(
            request=request,
            action='update',
            model_name='Coupon',
            object_id=coupon.id,
            object_name=coupon.code,
            changes={key: str(value) for key, value in serializer.validated_data.items()},
        )
        return Response(CouponSerializer(coupon).data)
    else:  # DELETE
        try:
            services.delete_coupon(coupon)
        except CouponError as e:
            return coupon_error_response(e)
        create_audit_log(
            request=request,
            action='delete',
            model_name='Coupon',
            object_id=pk,
            object_name=coupon.code,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsAdminUser])
def coupon_toggle(request, pk):
    """Flip the coupon's active flag"""
    try:
        coupon = services.toggle_coupon(services.get_coupon(pk))
    except CouponError as e:
        return coupon_error_response(e)
    create_audit_log(
        request=request,
        action='coupon_toggle',
        model_name='Coupon',
        object_id=coupon.id,
        object_name=coupon.code,
        changes={'is_active': coupon.is_active},
    )
    return Response({
        'message': f"Coupon {'activated' if coupon.is_active else 'deactivated'} successfully",
        'coupon': CouponSerializer(coupon).data,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminUser])
def coupon_usage(request, pk):
    """Redemption history of a coupon, newest first"""
    try:
        coupon = services.get_coupon(pk)
    except CouponError as e:
        return coupon_error_response(e)
    history = services.usage_history(coupon)
    return Response({
        'coupon': {
            'code': coupon.code,
            'usedCount': coupon.used_count,
            'usageLimit': {
                'total': coupon.usage_limit_total,
                'perUser': coupon.usage_limit_per_user,
            },
        },
        'usageHistory': CouponUsageSerializer(history, many=True).data,
    })
