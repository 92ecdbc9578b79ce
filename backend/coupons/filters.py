import django_filters
from django.db.models import Q
from django.utils import timezone
from .models import Coupon


class CouponFilter(django_filters.FilterSet):
    """Query-string filters for the admin coupon list"""
    is_active = django_filters.BooleanFilter(field_name='is_active')
    type = django_filters.ChoiceFilter(field_name='type', choices=Coupon.TYPE_CHOICES)
    search = django_filters.CharFilter(method='filter_search')
    expired = django_filters.BooleanFilter(method='filter_expired')

    class Meta:
        model = Coupon
        fields = ['is_active', 'type']

    def filter_search(self, queryset, name, value):
        value = value.strip()
        if not value:
            return queryset
        return queryset.filter(Q(code__icontains=value) | Q(description__icontains=value))

    def filter_expired(self, queryset, name, value):
        expired = Q(expiry_date__isnull=False, expiry_date__lte=timezone.now())
        return queryset.filter(expired) if value else queryset.exclude(expired)
