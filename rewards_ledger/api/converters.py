"""
URL converters for the API routes.
"""
from werkzeug.routing import IntegerConverter

from ..utils.validation import MAX_INT


class RecordIdConverter(IntegerConverter):
    """URL ids that fit an INTEGER primary key; anything larger is a 404."""

    def __init__(self, url_map, *args, **kwargs):
        super().__init__(url_map, min=1, max=MAX_INT)
