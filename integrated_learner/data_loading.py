"""
Input contract: split a features x samples table into per-layer
samples x features frames using the feature metadata, and check the sample
metadata columns the pipeline needs.

Cleaning and normalization happen upstream; this module only checks that
the tables line up.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .errors import ConfigurationError, SchemaMismatchError


def read_table(path: Union[str, Path]) -> pd.DataFrame:
    """Read a CSV/TSV table whose first column is the row index."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"input table not found: {path}")
    sep = "\t" if path.suffix.lower() in (".tsv", ".txt") else ","
    df = pd.read_csv(path, sep=sep, index_col=0)
    df.index = df.index.astype(str)
    return df


def check_sample_metadata(sample_metadata: pd.DataFrame,
                          cfg: Mapping[str, Any],
                          require_subject: bool = True,
                          ) -> Tuple[Optional[np.ndarray], np.ndarray]:
    """Return (subject ids, outcome) after checking mandatory columns.

    Validation metadata only needs the outcome; pass ``require_subject=False``
    and the subject ids come back as None when the column is absent.
    """
    subj_col, y_col = cfg["subject_col"], cfg["outcome_col"]
    needed = (subj_col, y_col) if require_subject else (y_col,)
    missing = [c for c in needed if c not in sample_metadata.columns]
    if missing:
        raise ConfigurationError(f"sample metadata lacks mandatory columns {missing}")
    if sample_metadata.index.duplicated().any():
        raise SchemaMismatchError("sample metadata has duplicated sample ids")

    subjects = None
    if subj_col in sample_metadata.columns:
        subj = sample_metadata[subj_col]
        if subj.isna().any():
            raise ConfigurationError(
                f"{int(subj.isna().sum())} samples have no {subj_col}")
        subjects = subj.astype(str).to_numpy()
    y = pd.to_numeric(sample_metadata[y_col], errors="coerce")
    if y.isna().any():
        raise ConfigurationError(
            f"{int(y.isna().sum())} samples have a missing or non-numeric {y_col}")
    y = y.to_numpy(dtype=float)
    if cfg["family"] == "binomial" and not np.isin(y, (0.0, 1.0)).all():
        raise ConfigurationError(f"binomial outcome {y_col} must be coded 0/1")
    return subjects, y


def split_layers(feature_table: pd.DataFrame,
                 feature_metadata: pd.DataFrame,
                 sample_metadata: pd.DataFrame,
                 cfg: Mapping[str, Any],
                 layer_order: Optional[list] = None,
                 ) -> Dict[str, pd.DataFrame]:
    """Cut the features x samples table into samples x features layers.

    Layers keep their first-appearance order in the feature metadata unless
    ``layer_order`` is given. Every layer is indexed by the sample metadata
    index, in that order.
    """
    layer_col = cfg["layer_col"]
    if layer_col not in feature_metadata.columns:
        raise ConfigurationError(f"feature metadata lacks mandatory column {layer_col!r}")

    ft_features = feature_table.index.astype(str)
    fm_features = feature_metadata.index.astype(str)
    if ft_features.duplicated().any():
        raise SchemaMismatchError("feature table has duplicated feature ids")
    if fm_features.duplicated().any():
        raise SchemaMismatchError("feature metadata has duplicated feature ids")
    unmapped = ft_features.difference(fm_features)
    if len(unmapped):
        raise SchemaMismatchError(
            f"{len(unmapped)} features have no layer in the feature metadata "
            f"(e.g. {list(unmapped[:3])})")

    samples = sample_metadata.index.astype(str)
    table_samples = feature_table.columns.astype(str)
    if set(samples) != set(table_samples) or len(samples) != len(table_samples):
        raise SchemaMismatchError(
            "feature table samples and sample metadata ids do not match")

    table = feature_table.copy()
    table.index = ft_features
    table.columns = table_samples
    fm = feature_metadata.copy()
    fm.index = fm_features

    owner = fm.loc[table.index, layer_col].astype(str)
    names = list(pd.unique(owner))
    if layer_order is not None:
        unknown = [n for n in layer_order if n not in names]
        if unknown:
            raise ConfigurationError(f"requested layers not present: {unknown}")
        names = list(layer_order)

    layers: Dict[str, pd.DataFrame] = {}
    for name in names:
        feats = owner.index[owner == name]
        block = table.loc[feats, list(samples)].T
        block.index = pd.Index(list(samples), name="sample_id")
        layers[name] = block.apply(pd.to_numeric, errors="coerce")
    return layers


def load_inputs(features: Union[str, Path], sample_metadata: Union[str, Path],
                feature_metadata: Union[str, Path], cfg: Mapping[str, Any],
                require_subject: bool = True,
                ) -> Tuple[Dict[str, pd.DataFrame], pd.DataFrame]:
    """Read the three input tables and return (layers, sample metadata)."""
    ft = read_table(features)
    sm = read_table(sample_metadata)
    fm = read_table(feature_metadata)
    check_sample_metadata(sm, cfg, require_subject=require_subject)
    return split_layers(ft, fm, sm, cfg), sm
