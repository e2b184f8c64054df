from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .typing import SupportsEmbedding


def export_embedding(model: SupportsEmbedding, format: str = "pandas") -> Any:
    """Exports a fitted embedding as a DataFrame.

    Parameters
    ----------
    model : SupportsEmbedding
        A fitted model exposing an ``embedding_`` property of shape
        ``(n_samples, n_components)``.
    format : str, default="pandas"
        The DataFrame format to return. One of "pandas" or "polars".

    Returns
    -------
    Any
        A DataFrame with a ``point_id`` column followed by one
        ``component_<d>`` column per output dimension.

    Examples
    --------
    >>> model = fuzzymap.VectorUMAP(n_neighbors=10).fit(X)
    >>> df = fuzzymap.export_embedding(model)
    >>> df.columns.tolist()
    ['point_id', 'component_0', 'component_1']
    """
    import numpy as np
    import pandas as pd

    embedding = np.asarray(model.embedding_)
    if embedding.ndim != 2:
        raise ValueError(f"Expected a 2D embedding, got shape {embedding.shape}.")

    df_data: dict[str, Any] = {"point_id": np.arange(embedding.shape[0], dtype=np.int32)}
    for d in range(embedding.shape[1]):
        df_data[f"component_{d}"] = embedding[:, d]
    df = pd.DataFrame(df_data)

    if format == "pandas":
        return df
    elif format == "polars":
        from ._dependencies import import_optional_dependency

        pl = import_optional_dependency("polars", extra="Required for format='polars'.")
        return pl.from_pandas(df)
    else:
        raise ValueError(f"Unknown format: {format}")
