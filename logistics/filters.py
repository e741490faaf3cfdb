"""
Logistics App Filters
"""

import django_filters

from .models import Delivery


class DeliveryFilter(django_filters.FilterSet):
    """
    Listing filters layered on top of the role-scoped queryset.

    ``status`` is applied by the visibility layer itself, since it
    changes what a courier's feed contains.
    """

    item = django_filters.CharFilter(field_name='item', lookup_expr='icontains')
    business_name = django_filters.CharFilter(field_name='business_name', lookup_expr='icontains')
    created_after = django_filters.IsoDateTimeFilter(field_name='created_at', lookup_expr='gte')
    created_before = django_filters.IsoDateTimeFilter(field_name='created_at', lookup_expr='lte')
    q = django_filters.CharFilter(method='filter_search')

    class Meta:
        model = Delivery
        fields = ['item', 'business_name', 'created_after', 'created_before']

    def filter_search(self, queryset, name, value):
        from django.db.models import Q
        return queryset.filter(
            Q(item__icontains=value) |
            Q(business_name__icontains=value) |
            Q(destination_address__icontains=value)
        )
