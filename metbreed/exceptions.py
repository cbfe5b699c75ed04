"""Errors and warnings raised by the MET analyses."""

from __future__ import annotations


class MetError(Exception):
    """Base class for all metbreed errors."""


class InvalidArgumentError(MetError, ValueError):
    """An option value, column name or group size is not acceptable."""


class DataQualityError(MetError, ValueError):
    """The trial data cannot be analysed as given."""


class UnsupportedDesignError(MetError, ValueError):
    """The trial has too few factor levels for the requested analysis."""


class MetWarning(UserWarning):
    pass


class MissingValuesWarning(MetWarning):
    pass


class DataImputationWarning(MetWarning):
    pass
