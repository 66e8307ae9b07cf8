"""
Dtype tag translation between internal scalar kinds and external tensors.

External frameworks name element types with a small, fixed set of tags:

    int8, uint8, int16, int32, int64, float16, float32, float64, bool

This module maps `ScalarKind` values to and from those tags and, for the
host-side plumbing, to NumPy dtypes and array-interface typestrs. It only
translates *names*; it never converts values.

Kinds without an external analog (``uint32``, ``uint64``) raise
`UnsupportedTypeError`.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from ...domain._errors import UnsupportedTypeError
from ...domain._scalar import ScalarKind

EXTERNAL_TAGS = (
    "int8",
    "uint8",
    "int16",
    "int32",
    "int64",
    "float16",
    "float32",
    "float64",
    "bool",
)

_KIND_TO_TAG = {
    ScalarKind.INT8: "int8",
    ScalarKind.UINT8: "uint8",
    ScalarKind.INT16: "int16",
    ScalarKind.INT32: "int32",
    ScalarKind.INT64: "int64",
    ScalarKind.FLOAT16: "float16",
    ScalarKind.FLOAT32: "float32",
    ScalarKind.FLOAT64: "float64",
    ScalarKind.BOOL: "bool",
}

_TAG_TO_KIND = {tag: kind for kind, tag in _KIND_TO_TAG.items()}

_TAG_TO_NUMPY = {tag: np.dtype(tag) for tag in EXTERNAL_TAGS}

# torch spells a few dtypes differently when stringified
_TAG_ALIASES = {
    "half": "float16",
    "float": "float32",
    "double": "float64",
    "short": "int16",
    "int": "int32",
    "long": "int64",
}


def to_external_tag(kind: ScalarKind) -> str:
    """
    Return the external dtype tag for a scalar kind.

    Raises
    ------
    UnsupportedTypeError
        If the kind has no external analog.
    """
    try:
        return _KIND_TO_TAG[kind]
    except KeyError:
        raise UnsupportedTypeError(kind, EXTERNAL_TAGS) from None


def from_external_tag(tag: str) -> ScalarKind:
    """
    Return the scalar kind for an external dtype tag.

    Accepts framework spellings such as ``"torch.float32"`` or ``"float"``.

    Raises
    ------
    UnsupportedTypeError
        If the tag is not one of the supported external tags.
    """
    norm = normalize_tag(tag)
    if norm is None:
        raise UnsupportedTypeError(tag, EXTERNAL_TAGS)
    return _TAG_TO_KIND[norm]


def normalize_tag(tag: object) -> Optional[str]:
    """Strip framework prefixes and aliases; None if the tag is unknown."""
    text = str(tag).strip().lower()
    if "." in text:
        text = text.rsplit(".", 1)[-1]
    text = _TAG_ALIASES.get(text, text)
    return text if text in _TAG_TO_KIND else None


def numpy_dtype(kind: ScalarKind) -> np.dtype:
    """NumPy dtype used for host views of `kind` (native byte order)."""
    return _TAG_TO_NUMPY[to_external_tag(kind)]


def itemsize(kind: ScalarKind) -> int:
    """Size in bytes of one element of `kind`."""
    return int(numpy_dtype(kind).itemsize)


def tag_from_typestr(typestr: str) -> Optional[str]:
    """
    Map an array-interface typestr (e.g. ``"<f4"``, ``"|b1"``) to a tag.

    Non-native byte orders and unknown types yield None; the caller decides
    whether that is a dtype mismatch.
    """
    try:
        dt = np.dtype(typestr)
    except TypeError:
        return None
    if not dt.isnative:
        return None
    return normalize_tag(dt.name)
