"""
Exception hierarchy shared by every pipeline stage.

ConfigurationError and SchemaMismatchError are raised before any model is
fit. LayerFitError and OptimizationError abort a fit that is already running.
"""

from __future__ import annotations

from typing import Optional


class IntegratedLearnerError(Exception):
    """Base class for all errors raised by integrated_learner."""


class ConfigurationError(IntegratedLearnerError, ValueError):
    """Invalid fold count, unknown option, or missing mandatory column."""


class SchemaMismatchError(IntegratedLearnerError, ValueError):
    """Layers or samples that do not line up, in training or validation data."""


class LayerFitError(IntegratedLearnerError):
    """A base learner failed on a specific layer and fold.

    ``fold`` is None when the failing fit is the full-data model.
    """

    def __init__(self, layer: str, fold: Optional[int], message: str):
        self.layer = layer
        self.fold = fold
        self.message = message
        where = "full-data fit" if fold is None else f"fold {fold}"
        super().__init__(f"layer '{layer}' ({where}): {message}")

    def __reduce__(self):
        # joblib workers pickle exceptions back to the parent
        return (self.__class__, (self.layer, self.fold, self.message))


class OptimizationError(IntegratedLearnerError):
    """The meta-combiner solver failed to converge or returned non-finite weights."""
