"""
§1 — Subject-grouped fold partitioning.

Folds are assigned per subject, never per sample, so repeated measures of one
subject always land in the same fold. The assignment is computed once per fit
and shared read-only by every layer, the concatenation baseline, and the meta
step.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .errors import ConfigurationError
from .utils import readonly


@dataclass(frozen=True, eq=False)
class FoldAssignment:
    """Read-only fold labels for subjects and, through them, for samples."""

    subject_folds: Mapping
    sample_folds: np.ndarray
    subject_ids: np.ndarray
    sample_ids: Tuple
    n_folds: int
    seed: int

    @property
    def n_samples(self) -> int:
        return len(self.sample_folds)

    @property
    def is_leave_one_subject_out(self) -> bool:
        return self.n_folds == len(self.subject_folds)

    def held_out(self, fold: int) -> np.ndarray:
        return np.flatnonzero(self.sample_folds == fold)

    def splits(self) -> Iterator[Tuple[int, np.ndarray, np.ndarray]]:
        """Yield ``(fold, train_positions, held_out_positions)`` per fold."""
        for f in range(self.n_folds):
            va = self.sample_folds == f
            yield f, np.flatnonzero(~va), np.flatnonzero(va)

    def check_no_leakage(self) -> None:
        """Raise if any subject sits on both sides of a split."""
        for f, tr, va in self.splits():
            overlap = set(self.subject_ids[tr]) & set(self.subject_ids[va])
            if overlap:
                raise ConfigurationError(
                    f"fold {f}: {len(overlap)} subjects in both train and held-out")
            if va.size == 0:
                raise ConfigurationError(f"fold {f} holds no samples")

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "sample_id": list(self.sample_ids),
            "subject_id": self.subject_ids,
            "fold": self.sample_folds,
        })


def resolve_n_folds(n_folds: Union[int, str], n_subjects: int) -> int:
    """Turn the configured fold count into K, checking 2 <= K <= n_subjects."""
    if isinstance(n_folds, str):
        if n_folds.lower() != "loso":
            raise ConfigurationError(f"n_folds must be an integer or 'loso', got {n_folds!r}")
        k = n_subjects
    else:
        k = int(n_folds)
    if k < 2:
        raise ConfigurationError(f"n_folds must be >= 2, got {k}")
    if k > n_subjects:
        raise ConfigurationError(
            f"n_folds={k} exceeds the number of distinct subjects ({n_subjects})")
    return k


def partition_subjects(subject_ids: Sequence,
                       n_folds: Union[int, str] = 5,
                       seed: int = 42,
                       sample_ids: Optional[Sequence] = None,
                       ) -> FoldAssignment:
    """Deal shuffled distinct subjects round-robin into K folds.

    Subjects are ordered by first appearance, permuted with
    ``numpy.random.default_rng(seed)``, and subject ``i`` of the permutation
    goes to fold ``i % K``. Fold sizes therefore differ by at most one
    subject, and the result depends only on the subject sequence and the seed.
    """
    subj = pd.Series(list(subject_ids), dtype="object")
    if subj.isna().any():
        raise ConfigurationError(
            f"{int(subj.isna().sum())} samples have no subject id")
    subj_arr = subj.astype(str).to_numpy()
    unique = pd.unique(subj_arr)
    k = resolve_n_folds(n_folds, len(unique))

    rng = np.random.default_rng(seed)
    order = rng.permutation(len(unique))
    labels = np.empty(len(unique), dtype=np.int64)
    labels[order] = np.arange(len(unique)) % k
    mapping = dict(zip(unique.tolist(), labels.tolist()))

    per_sample = np.array([mapping[s] for s in subj_arr], dtype=np.int64)
    if sample_ids is None:
        sample_ids = range(len(subj_arr))
    sample_ids = tuple(sample_ids)
    if len(sample_ids) != len(subj_arr):
        raise ConfigurationError(
            f"{len(sample_ids)} sample ids for {len(subj_arr)} subject ids")

    folds = FoldAssignment(
        subject_folds=MappingProxyType(mapping),
        sample_folds=readonly(per_sample),
        subject_ids=readonly(subj_arr),
        sample_ids=sample_ids,
        n_folds=k,
        seed=int(seed),
    )
    folds.check_no_leakage()
    return folds
