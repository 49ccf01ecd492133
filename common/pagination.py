from django.conf import settings
from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Page-number pagination for inventory, sales, invoice and recycle-bin listings.

    `?page_size=` is honoured up to `API_MAX_PAGE_SIZE`.
    """

    page_size_query_param = "page_size"

    @property
    def max_page_size(self):
        return getattr(settings, "API_MAX_PAGE_SIZE", 100)
