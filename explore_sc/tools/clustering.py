"""
Partitioning around medoids (k-medoids) on PCA space.

PAM works on a precomputed dissimilarity matrix: a greedy BUILD phase
picks the initial medoids, then SWAP exchanges a medoid with a
non-medoid as long as that lowers the total distance of cells to their
nearest medoid. The number of clusters is chosen at the elbow of the
cost curve, or by average silhouette width.
"""

import numpy as np
import pandas as pd
from anndata import AnnData
from scipy.spatial.distance import pdist, squareform
from sklearn.metrics import silhouette_samples
from tqdm import tqdm
from typing import Optional, NamedTuple, Sequence
import logging

logger = logging.getLogger(__name__)


class PAMResult(NamedTuple):
    """Outcome of a PAM run; labels index into ``medoids``."""
    medoids: np.ndarray
    labels: np.ndarray
    cost: float
    n_iter: int


def pairwise_distances(X: np.ndarray, metric: str = 'euclidean') -> np.ndarray:
    """Square dissimilarity matrix between the rows of X."""
    X = np.asarray(X, dtype=np.float64)
    if X.shape[0] < 2:
        return np.zeros((X.shape[0], X.shape[0]))
    return squareform(pdist(X, metric=metric))


def _assign(D: np.ndarray, medoids: np.ndarray):
    Dm = D[:, medoids]
    order = np.argsort(Dm, axis=1, kind='stable')
    rows = np.arange(D.shape[0])
    nearest = order[:, 0]
    d_nearest = Dm[rows, nearest]
    if len(medoids) > 1:
        d_second = Dm[rows, order[:, 1]]
    else:
        d_second = np.full(D.shape[0], np.inf)
    return nearest, d_nearest, d_second


def _build(D: np.ndarray, k: int) -> np.ndarray:
    medoids = [int(np.argmin(D.sum(axis=1)))]
    d_nearest = D[:, medoids[0]].copy()

    while len(medoids) < k:
        gains = np.maximum(d_nearest[None, :] - D, 0).sum(axis=1)
        gains[medoids] = -np.inf
        new = int(np.argmax(gains))
        medoids.append(new)
        d_nearest = np.minimum(d_nearest, D[:, new])

    return np.array(medoids)


def pam(D: np.ndarray, k: int, max_iter: int = 100) -> PAMResult:
    """
    Partitioning around medoids on a dissimilarity matrix.

    Parameters
    ----------
    D : np.ndarray
        Symmetric (n, n) dissimilarities with a zero diagonal
    k : int
        Number of clusters
    max_iter : int
        Maximum number of SWAP steps

    Returns
    -------
    result : PAMResult
        Medoid indices (sorted), cluster label per object, total cost
        and number of swaps performed

    Examples
    --------
    >>> D = pairwise_distances(adata.obsm['X_pca'][:, :5])
    >>> result = pam(D, k=3)
    >>> result.labels[:5]
    array([0, 0, 2, 1, 0])
    """
    D = np.asarray(D, dtype=np.float64)
    if D.ndim != 2 or D.shape[0] != D.shape[1]:
        raise ValueError(f"Dissimilarity matrix must be square, got {D.shape}")

    n = D.shape[0]
    if not 1 <= k <= n:
        raise ValueError(f"k must be between 1 and {n}, got {k}")

    medoids = _build(D, k)
    is_medoid = np.zeros(n, dtype=bool)
    is_medoid[medoids] = True

    n_iter = 0
    for n_iter in range(1, max_iter + 1):
        nearest, d_nearest, d_second = _assign(D, medoids)
        current = d_nearest.sum()

        best_delta, best_swap = 0.0, None
        for position in range(k):
            owned = nearest == position
            # objects of the removed medoid fall back to their second choice
            new_dist = np.where(
                owned[None, :],
                np.minimum(D, d_second[None, :]),
                np.minimum(D, d_nearest[None, :]),
            )
            delta = new_dist.sum(axis=1) - current
            delta[is_medoid] = np.inf

            candidate = int(np.argmin(delta))
            if delta[candidate] < best_delta - 1e-10:
                best_delta, best_swap = delta[candidate], (position, candidate)

        if best_swap is None:
            break

        position, candidate = best_swap
        is_medoid[medoids[position]] = False
        is_medoid[candidate] = True
        medoids[position] = candidate
    else:
        logger.warning(f"PAM stopped after {max_iter} swaps without converging")

    medoids = np.sort(medoids)
    labels, d_nearest, _ = _assign(D, medoids)

    return PAMResult(
        medoids=medoids,
        labels=labels,
        cost=float(d_nearest.sum()),
        n_iter=n_iter,
    )


def _embedding(adata: AnnData, use_rep: str, n_pcs: Optional[int]) -> np.ndarray:
    if use_rep not in adata.obsm:
        raise ValueError(f"'{use_rep}' not found in adata.obsm. Run tl.pca first.")

    X = np.asarray(adata.obsm[use_rep])
    if n_pcs is None and use_rep == 'X_pca' and 'pca' in adata.uns:
        n_pcs = adata.uns['pca'].get('n_selected')
    if n_pcs is not None:
        X = X[:, :int(n_pcs)]
    return X


def _silhouette(D: np.ndarray, labels: np.ndarray) -> np.ndarray:
    n_labels = len(np.unique(labels))
    if n_labels < 2 or n_labels >= len(labels):
        return np.zeros(len(labels))
    return silhouette_samples(D, labels, metric='precomputed')


def kmedoids(
    adata: AnnData,
    n_clusters: int,
    n_pcs: Optional[int] = None,
    metric: str = 'euclidean',
    use_rep: str = 'X_pca',
    key_added: str = 'kmedoids',
) -> None:
    """
    Cluster cells with PAM.

    Adds to adata:
    - .obs[key_added]: Cluster '1'..'k' (ordered by medoid position)
    - .obs[key_added + '_silhouette']: Silhouette width per cell
    - .uns[key_added]: Medoids, cost and average silhouette

    Parameters
    ----------
    adata : AnnData
        Data after tl.pca
    n_clusters : int
        Number of clusters
    n_pcs : Optional[int]
        Leading PCs to use (default: .uns['pca']['n_selected'], else all)
    metric : str
        Any scipy.spatial.distance metric
    use_rep : str
        Embedding in .obsm
    key_added : str
        Column / key for the result
    """
    X = _embedding(adata, use_rep, n_pcs)
    D = pairwise_distances(X, metric=metric)
    result = pam(D, n_clusters)

    categories = [str(i + 1) for i in range(n_clusters)]
    labels = np.array(categories)[result.labels]
    silhouette = _silhouette(D, result.labels)

    adata.obs[key_added] = pd.Categorical(labels, categories=categories)
    adata.obs[f"{key_added}_silhouette"] = silhouette
    adata.uns[key_added] = {
        'method': 'pam',
        'n_clusters': n_clusters,
        'n_pcs': X.shape[1],
        'metric': metric,
        'categories': np.array(categories),
        'medoids': np.asarray(adata.obs_names[result.medoids]),
        'medoid_indices': result.medoids,
        'cost': result.cost,
        'average_silhouette': float(silhouette.mean()),
    }

    sizes = adata.obs[key_added].value_counts().sort_index()
    logger.info(
        f"k-medoids with k={n_clusters} on {X.shape[1]} dims: "
        f"sizes {dict(sizes)}, average silhouette {silhouette.mean():.3f}"
    )


def elbow(
    adata: AnnData,
    k_range: Sequence[int] = range(1, 11),
    n_pcs: Optional[int] = None,
    metric: str = 'euclidean',
    use_rep: str = 'X_pca',
    verbose: bool = True,
) -> pd.DataFrame:
    """
    PAM cost and average silhouette width over a range of k.

    Values of k larger than the number of cells are skipped.

    Adds to adata.uns:
    - 'elbow': DataFrame with columns 'k', 'cost', 'silhouette'

    Returns
    -------
    elbow : pd.DataFrame
        One row per k
    """
    X = _embedding(adata, use_rep, n_pcs)
    D = pairwise_distances(X, metric=metric)

    ks = [int(k) for k in k_range if 1 <= k <= adata.n_obs]
    if not ks:
        raise ValueError(f"No valid k in {list(k_range)} for {adata.n_obs} cells")

    rows = []
    for k in tqdm(ks, desc="k-medoids", disable=not verbose):
        result = pam(D, k)
        silhouette = np.nan
        if 2 <= k < adata.n_obs:
            silhouette = float(_silhouette(D, result.labels).mean())
        rows.append({'k': k, 'cost': result.cost, 'silhouette': silhouette})

    table = pd.DataFrame(rows)
    adata.uns['elbow'] = table

    logger.info("Elbow sweep:\n" + table.to_string(index=False))

    return table


def _line_error(x: np.ndarray, y: np.ndarray) -> float:
    slope, intercept = np.polyfit(x, y, 1)
    return float(np.sum((slope * x + intercept - y) ** 2))


def find_elbow(ks: Sequence[int], costs: Sequence[float]) -> int:
    """
    Elbow of a cost curve.

    Fits one straight line left of each candidate point and one right of
    it (the candidate belongs to both); the elbow is the split with the
    smallest total squared error.

    Parameters
    ----------
    ks : Sequence[int]
        Number of clusters, increasing
    costs : Sequence[float]
        Cost for each k

    Returns
    -------
    k : int
        The elbow (last k when there are fewer than three points)
    """
    ks = np.asarray(ks, dtype=np.float64)
    costs = np.asarray(costs, dtype=np.float64)

    if len(ks) != len(costs):
        raise ValueError("ks and costs must have the same length")
    if len(ks) < 3:
        return int(ks[-1])

    span = costs.max() - costs.min()
    if span == 0:
        return int(ks[0])
    y = (costs - costs.min()) / span
    x = (ks - ks.min()) / (ks.max() - ks.min())

    errors = [
        _line_error(x[:i + 1], y[:i + 1]) + _line_error(x[i:], y[i:])
        for i in range(1, len(ks) - 1)
    ]
    return int(ks[int(np.argmin(errors)) + 1])


def choose_k(adata: AnnData, method: str = 'elbow') -> int:
    """
    Pick the number of clusters from .uns['elbow'].

    Parameters
    ----------
    adata : AnnData
        Data after tl.elbow
    method : str
        'elbow': Knee of the cost curve
        'silhouette': Largest average silhouette width
    """
    if 'elbow' not in adata.uns:
        raise ValueError("Elbow sweep not found. Run tl.elbow first.")

    table = adata.uns['elbow']

    if method == 'elbow':
        k = find_elbow(table['k'].values, table['cost'].values)
    elif method == 'silhouette':
        scored = table.dropna(subset=['silhouette'])
        if len(scored) == 0:
            raise ValueError("No silhouette widths available; extend k_range beyond 1")
        k = int(scored.loc[scored['silhouette'].idxmax(), 'k'])
    else:
        raise ValueError(f"Unknown method: {method}")

    logger.info(f"Chose k={k} ({method})")

    return k
