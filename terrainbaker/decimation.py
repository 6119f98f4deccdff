"""Constant-error edge-collapse decimation for terrain grids.

Quadric error metric (Garland & Heckbert) simplification with two extra
rules the terrain tiles depend on:

1. Any edge touching a boundary vertex is frozen, so the outer ring of the
   grid survives untouched and neighbouring tiles keep identical seams.
2. Decimation stops once the face count reaches a floor, even when the
   error budget would allow more collapses.

Candidate positions are restricted to the two edge endpoints and their
midpoint, so surviving vertices never leave the grid's footprint.

Collapses run in rounds over numpy arrays. Each round prices every free
edge, then takes the edges that are the cheapest within their own
neighbourhood. No two of those share a face, so they can be checked against
the round's snapshot and applied together. An edge that fails the link or
flip check stays blocked until a collapse next to it changes its
neighbourhood.
"""

import logging
from typing import Optional, Tuple

import numpy as np

from .constants import DECIMATION_MAX_ERROR, DECIMATION_MIN_FACES

logger = logging.getLogger(__name__)


def face_quadrics(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """Accumulate per-vertex plane quadrics.

    Returns a ``(V, 10)`` array holding the upper triangle of each symmetric
    4x4 quadric: ``a², ab, ac, ad, b², bc, bd, c², cd, d²``.
    """
    v0 = vertices[faces[:, 0]]
    v1 = vertices[faces[:, 1]]
    v2 = vertices[faces[:, 2]]
    normals = np.cross(v1 - v0, v2 - v0)
    lengths = np.linalg.norm(normals, axis=1)
    valid = lengths > 0
    normals[valid] /= lengths[valid, None]
    normals[~valid] = 0.0
    d = -np.einsum('ij,ij->i', normals, v0)
    a, b, c = normals[:, 0], normals[:, 1], normals[:, 2]
    q = np.column_stack([a * a, a * b, a * c, a * d,
                         b * b, b * c, b * d,
                         c * c, c * d,
                         d * d])

    quadrics = np.zeros((len(vertices), 10), dtype=np.float64)
    for k in range(3):
        np.add.at(quadrics, faces[:, k], q)
    return quadrics


def boundary_vertices(n_vertices: int, faces: np.ndarray) -> np.ndarray:
    """Boolean mask of vertices lying on an edge used by exactly one face."""
    edges = np.sort(faces[:, [0, 1, 1, 2, 2, 0]].reshape(-1, 2), axis=1)
    unique, counts = np.unique(edges, axis=0, return_counts=True)
    mask = np.zeros(n_vertices, dtype=bool)
    mask[unique[counts == 1].ravel()] = True
    return mask


def quadric_error(q, p):
    """Error of position(s) *p* under quadric(s) *q*, clamped at zero.

    Broadcasts ``(..., 10)`` quadrics against ``(..., 3)`` positions.
    """
    q = np.asarray(q, dtype=np.float64)
    p = np.asarray(p, dtype=np.float64)
    x, y, z = p[..., 0], p[..., 1], p[..., 2]
    err = (q[..., 0] * x * x + 2 * q[..., 1] * x * y + 2 * q[..., 2] * x * z + 2 * q[..., 3] * x
           + q[..., 4] * y * y + 2 * q[..., 5] * y * z + 2 * q[..., 6] * y
           + q[..., 7] * z * z + 2 * q[..., 8] * z
           + q[..., 9])
    return np.maximum(err, 0.0)


def _edge_keys(faces: np.ndarray, n_vertices: int) -> np.ndarray:
    """Sorted unique undirected edges encoded as ``lo * n_vertices + hi``."""
    a = faces.ravel()
    b = faces[:, [1, 2, 0]].ravel()
    return np.unique(np.minimum(a, b) * n_vertices + np.maximum(a, b))


def _triangle_normals(tri: np.ndarray) -> np.ndarray:
    return np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])


class _Incidence:
    """Vertex -> face lookup for one round's face array."""

    def __init__(self, faces: np.ndarray, n_vertices: int):
        corners = faces.ravel()
        self.face_of = np.argsort(corners, kind='stable') // 3
        self.count = np.bincount(corners, minlength=n_vertices)
        self.start = np.cumsum(self.count) - self.count

    def gather(self, verts: np.ndarray):
        """``(rows, faces)`` pairs: every face incident to ``verts[row]``."""
        counts = self.count[verts]
        rows = np.repeat(np.arange(len(verts)), counts)
        offsets = np.arange(counts.sum()) - np.repeat(np.cumsum(counts) - counts, counts)
        return rows, self.face_of[np.repeat(self.start[verts], counts) + offsets]


class EdgeDecimator:
    """Collapse the cheapest edges while their quadric error stays within budget.

    Parameters
    ----------
    max_error : float
        Largest quadric error (sum of squared plane distances, world units)
        an edge collapse may introduce.
    min_faces : int or None
        Stop once the mesh has this many faces or fewer.
    keep_boundary : bool
        Never collapse an edge touching a boundary vertex.
    """

    def __init__(self, max_error: float = DECIMATION_MAX_ERROR,
                 min_faces: Optional[int] = DECIMATION_MIN_FACES,
                 keep_boundary: bool = True):
        self.max_error = max_error
        self.min_faces = min_faces
        self.keep_boundary = keep_boundary

    def decimate(self, vertices, faces) -> Tuple[np.ndarray, np.ndarray]:
        """Simplify a triangle mesh.

        Returns ``(vertices, faces)`` where *vertices* still holds every
        original handle (collapsed ones are simply unreferenced) and *faces*
        lists the surviving triangles with their original winding.
        """
        positions = np.array(vertices, dtype=np.float64).reshape(-1, 3)
        faces = np.array(faces, dtype=np.int64).reshape(-1, 3)
        n = len(positions)
        initial = len(faces)

        quadrics = face_quadrics(positions, faces)
        if self.keep_boundary:
            frozen = boundary_vertices(n, faces)
        else:
            frozen = np.zeros(n, dtype=bool)
        # bumped whenever a vertex's incident faces change
        version = np.zeros(n, dtype=np.int64)
        blocked_keys = np.empty(0, dtype=np.int64)
        blocked_sig = np.empty(0, dtype=np.int64)

        rounds = collapses = 0
        while len(faces):
            if self.min_faces is not None and len(faces) <= self.min_faces:
                break

            keys = _edge_keys(faces, n)
            a, b = keys // n, keys % n

            free = ~frozen[a] & ~frozen[b]
            if len(blocked_keys):
                pos = np.minimum(np.searchsorted(blocked_keys, keys), len(blocked_keys) - 1)
                still_blocked = ((blocked_keys[pos] == keys)
                                 & (blocked_sig[pos] == version[a] + version[b]))
                free &= ~still_blocked
            cand = np.flatnonzero(free)
            if not len(cand):
                break

            # price the three candidate positions of every free edge
            u, v = a[cand], b[cand]
            q = quadrics[u] + quadrics[v]
            pu, pv = positions[u], positions[v]
            options = np.stack([pu, pv, (pu + pv) * 0.5])
            errors = quadric_error(q[None], options)
            pick = np.argmin(errors, axis=0)
            cols = np.arange(len(cand))
            cost = errors[pick, cols]
            target = options[pick, cols]

            within = cost <= self.max_error
            if not within.any():
                break
            u, v, cost, target = u[within], v[within], cost[within], target[within]

            chosen = self._independent(n, a, b, u, v, cost)
            u, v, target = u[chosen], v[chosen], target[chosen]

            incidence = _Incidence(faces, n)
            valid = self._valid_collapses(positions, faces, incidence, n, u, v, target)

            if not valid.all():
                rejected_keys = u[~valid] * n + v[~valid]
                rejected_sig = version[u[~valid]] + version[v[~valid]]
                if len(blocked_keys):
                    lo, hi = blocked_keys // n, blocked_keys % n
                    live = blocked_sig == version[lo] + version[hi]
                    rejected_keys = np.concatenate([blocked_keys[live], rejected_keys])
                    rejected_sig = np.concatenate([blocked_sig[live], rejected_sig])
                order = np.argsort(rejected_keys)
                blocked_keys, blocked_sig = rejected_keys[order], rejected_sig[order]

            u, v, target = u[valid], v[valid], target[valid]
            if self.min_faces is not None:
                # every collapse removes the two faces sharing the edge
                budget = (len(faces) - self.min_faces + 1) // 2
                u, v, target = u[:budget], v[:budget], target[:budget]
            rounds += 1
            if not len(u):
                continue

            _, touched = incidence.gather(np.concatenate([u, v]))
            version[np.unique(faces[touched])] += 1

            positions[u] = target
            quadrics[u] += quadrics[v]
            remap = np.arange(n)
            remap[v] = u
            faces = remap[faces]
            keep = ((faces[:, 0] != faces[:, 1]) & (faces[:, 1] != faces[:, 2])
                    & (faces[:, 2] != faces[:, 0]))
            faces = faces[keep]
            collapses += len(u)

        logger.debug(f"Decimated {initial} -> {len(faces)} faces "
                     f"({collapses} collapses in {rounds} rounds)")
        return positions, faces

    @staticmethod
    def _independent(n, a, b, u, v, cost) -> np.ndarray:
        """Indices of candidates cheapest across their endpoints' neighbourhood.

        Returned in cost order. Endpoints of two chosen edges are never
        adjacent, so the chosen collapses touch disjoint faces.
        """
        m = len(cost)
        order = np.argsort(cost, kind='stable')
        rank = np.empty(m, dtype=np.int64)
        rank[order] = np.arange(m)

        best = np.full(n, m, dtype=np.int64)
        np.minimum.at(best, u, rank)
        np.minimum.at(best, v, rank)
        reach = best.copy()
        np.minimum.at(reach, a, best[b])
        np.minimum.at(reach, b, best[a])

        chosen = np.flatnonzero((reach[u] == rank) & (reach[v] == rank))
        return chosen[np.argsort(rank[chosen])]

    @staticmethod
    def _valid_collapses(positions, faces, incidence, n, u, v, target) -> np.ndarray:
        """Manifold, link-condition and flip checks for merging each *v* into *u*."""
        count = len(u)
        rows_u, faces_u = incidence.gather(u)
        rows_v, faces_v = incidence.gather(v)
        tri_u, tri_v = faces[faces_u], faces[faces_v]
        shared_u = (tri_u == v[rows_u, None]).any(axis=1)
        shared_v = (tri_v == u[rows_v, None]).any(axis=1)
        valid = np.bincount(rows_u[shared_u], minlength=count) == 2

        # Link condition: besides u and v, only the two opposite corners are common
        ring_u = np.unique(rows_u[:, None] * n + tri_u)
        ring_v = np.unique(rows_v[:, None] * n + tri_v)
        common = np.intersect1d(ring_u, ring_v, assume_unique=True)
        valid &= np.bincount(common // n, minlength=count) == 4

        rows = np.concatenate([rows_u[~shared_u], rows_v[~shared_v]])
        tris = np.concatenate([tri_u[~shared_u], tri_v[~shared_v]])
        old = positions[tris]
        moved = (tris == u[rows, None]) | (tris == v[rows, None])
        new = np.where(moved[..., None], target[rows][:, None, :], old)
        n_old = _triangle_normals(old)
        n_new = _triangle_normals(new)
        flipped = (np.einsum('ij,ij->i', n_old, n_new)
                   <= 1e-9 * np.einsum('ij,ij->i', n_old, n_old))
        valid[rows[flipped]] = False
        return valid
