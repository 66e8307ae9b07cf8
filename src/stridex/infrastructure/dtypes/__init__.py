from ._translator import (
    EXTERNAL_TAGS,
    from_external_tag,
    itemsize,
    normalize_tag,
    numpy_dtype,
    tag_from_typestr,
    to_external_tag,
)

__all__ = [
    "EXTERNAL_TAGS",
    "from_external_tag",
    "itemsize",
    "normalize_tag",
    "numpy_dtype",
    "tag_from_typestr",
    "to_external_tag",
]
