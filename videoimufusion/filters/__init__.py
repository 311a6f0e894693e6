"""Signal smoothing filters."""

from .one_euro import OneEuroFilter, OneEuroParams, QuaternionOneEuroFilter

__all__ = [
    "OneEuroFilter",
    "OneEuroParams",
    "QuaternionOneEuroFilter",
]
