import django_filters

from .models import Token, TokenStatus


class TokenFilter(django_filters.FilterSet):
    """Filter for a citizen's token history"""

    status = django_filters.MultipleChoiceFilter(choices=TokenStatus.choices)
    office_id = django_filters.CharFilter(lookup_expr="iexact")
    department_id = django_filters.CharFilter(lookup_expr="iexact")
    date_from = django_filters.DateFilter(field_name="appointment_date", lookup_expr="gte")
    date_to = django_filters.DateFilter(field_name="appointment_date", lookup_expr="lte")

    class Meta:
        model = Token
        fields = ["status", "office_id", "department_id", "date_from", "date_to"]
