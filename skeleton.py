"""
skeleton.py – Thinning of object masks and skeleton path analysis.

Two thinning methods:
  - zhang_suen:    two sub-iteration pixel removal on the 8-neighbourhood
  - morphological: iterative erode / open / subtract with a 3x3 cross

The path helpers turn a skeleton into an ordered centre line: the geodesic
diameter of the 8-connected skeleton graph (orthogonal step 1, diagonal
step sqrt(2)), with corner spurs trimmed and the ends extended to the
object boundary.
"""

import heapq
import logging
import math
from typing import Callable, Dict, List, Optional, Tuple

import cv2
import numpy as np

log = logging.getLogger("morphology.skeleton")

Point = Tuple[int, int]

_OFFSETS = [(-1, -1), (0, -1), (1, -1), (-1, 0), (1, 0), (-1, 1), (0, 1), (1, 1)]

# Minimum radius gain per pixel along a corner spur; a 90 degree corner gives 1/sqrt(2)
SPUR_SLOPE = 0.5


# ---------------------------------------------------------------------------
# Thinning
# ---------------------------------------------------------------------------

def skeletonize_zhang_suen(mask: np.ndarray) -> np.ndarray:
    """
    Zhang-Suen thinning. Pixels outside the image count as background.
    Repeats both sub-iterations until a full pass removes nothing.
    """
    out = np.zeros(mask.shape[:2], dtype=np.uint8)
    ys, xs = np.nonzero(mask)
    if len(xs) == 0:
        return out

    # Work on the bounding box only, padded by one background pixel
    x0, x1, y0, y1 = xs.min(), xs.max() + 1, ys.min(), ys.max() + 1
    img = np.pad((mask[y0:y1, x0:x1] > 0).astype(np.uint8), 1)
    inner = img[1:-1, 1:-1]

    iterations = 0
    while True:
        changed = False
        for step in (0, 1):
            p2 = img[:-2, 1:-1]
            p3 = img[:-2, 2:]
            p4 = img[1:-1, 2:]
            p5 = img[2:, 2:]
            p6 = img[2:, 1:-1]
            p7 = img[2:, :-2]
            p8 = img[1:-1, :-2]
            p9 = img[:-2, :-2]

            ring = (p2, p3, p4, p5, p6, p7, p8, p9, p2)
            b = sum(ring[:8])
            a = sum(((ring[i] == 0) & (ring[i + 1] == 1)).astype(np.uint8) for i in range(8))

            if step == 0:
                cond = ((p2 * p4 * p6) == 0) & ((p4 * p6 * p8) == 0)
            else:
                cond = ((p2 * p4 * p8) == 0) & ((p2 * p6 * p8) == 0)

            remove = (inner == 1) & (b >= 2) & (b <= 6) & (a == 1) & cond
            if remove.any():
                inner[remove] = 0
                changed = True
        iterations += 1
        if not changed:
            break

    log.debug("Zhang-Suen: %d passes, %d skeleton pixels", iterations, int(inner.sum()))
    out[y0:y1, x0:x1] = inner * 255
    return out


def skeletonize_morphological(mask: np.ndarray) -> np.ndarray:
    """
    Morphological skeleton: union of (erosion_k - opening(erosion_k)) until empty.

    On curved shapes the raw union falls apart into many pieces, so the
    pieces are grown inside the mask until they touch and the result is
    thinned to one pixel with Zhang-Suen.
    """
    img = np.where(mask > 0, 255, 0).astype(np.uint8)
    region = img.copy()
    skel = np.zeros_like(img)
    element = cv2.getStructuringElement(cv2.MORPH_CROSS, (3, 3))

    iterations = 0
    while cv2.countNonZero(img) > 0:
        # Background border, otherwise shapes touching the edge never vanish
        eroded = cv2.erode(img, element, borderType=cv2.BORDER_CONSTANT, borderValue=0)
        opened = cv2.dilate(eroded, element)
        skel = cv2.bitwise_or(skel, cv2.subtract(img, opened))
        img = eroded
        iterations += 1

    pieces = len(component_sizes(skel))
    log.debug("Morphological skeleton: %d iterations, %d pixels, %d pieces",
              iterations, cv2.countNonZero(skel), pieces)
    if pieces > 1:
        skel = _bridge(skel, region)
    return skeletonize_zhang_suen(skel)


def _bridge(skel: np.ndarray, region: np.ndarray) -> np.ndarray:
    """Grow skeleton pieces inside `region` until they form one component."""
    kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3))
    steps = 0
    while len(component_sizes(skel)) > 1:
        grown = cv2.bitwise_and(cv2.dilate(skel, kernel), region)
        if np.array_equal(grown, skel):
            break  # region itself is split
        skel = grown
        steps += 1
    log.debug("Bridged skeleton pieces in %d dilation steps", steps)
    return skel


METHODS: Dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "zhang_suen": skeletonize_zhang_suen,
    "morphological": skeletonize_morphological,
}


def skeletonize(mask: np.ndarray, method: str = "zhang_suen") -> np.ndarray:
    """0/255 skeleton with the same shape as `mask`."""
    if method not in METHODS:
        raise ValueError(f"Unknown skeleton method: {method}")
    return METHODS[method](mask)


# ---------------------------------------------------------------------------
# Skeleton graph
# ---------------------------------------------------------------------------

def skeleton_points(skeleton: np.ndarray) -> np.ndarray:
    """(N, 2) array of (x, y) for every skeleton pixel."""
    ys, xs = np.nonzero(skeleton)
    return np.column_stack([xs, ys]).astype(np.int32)


def _build_neighbors(points: List[Point]) -> Dict[Point, List[Tuple[Point, float]]]:
    present = set(points)
    neighbors = {}
    for x, y in points:
        neigh = []
        for dx, dy in _OFFSETS:
            nb = (x + dx, y + dy)
            if nb in present:
                neigh.append((nb, math.sqrt(2) if dx and dy else 1.0))
        neighbors[(x, y)] = neigh
    return neighbors


def _dijkstra(source: Point, neighbors: Dict[Point, List[Tuple[Point, float]]]):
    dist = {source: 0.0}
    prev = {source: None}
    heap = [(0.0, source)]
    while heap:
        d, node = heapq.heappop(heap)
        if d > dist[node]:
            continue
        for nb, weight in neighbors[node]:
            nd = d + weight
            if nd < dist.get(nb, math.inf):
                dist[nb] = nd
                prev[nb] = node
                heapq.heappush(heap, (nd, nb))
    return dist, prev


def component_sizes(skeleton: np.ndarray) -> np.ndarray:
    """Pixel count of each 8-connected skeleton component."""
    count, labels = cv2.connectedComponents((skeleton > 0).astype(np.uint8), connectivity=8)
    return np.bincount(labels.ravel(), minlength=count)[1:]


def is_fragmented(skeleton: np.ndarray, min_frac: float = 0.1) -> bool:
    """True if more than one component holds at least `min_frac` of the largest one."""
    sizes = component_sizes(skeleton)
    if len(sizes) < 2:
        return False
    return int(np.count_nonzero(sizes >= min_frac * sizes.max())) > 1


def _largest_component(skeleton: np.ndarray) -> np.ndarray:
    binary = (skeleton > 0).astype(np.uint8)
    count, labels = cv2.connectedComponents(binary, connectivity=8)
    if count <= 2:
        return binary
    sizes = np.bincount(labels.ravel())
    sizes[0] = 0
    return (labels == int(np.argmax(sizes))).astype(np.uint8)


def main_path(skeleton: np.ndarray) -> np.ndarray:
    """
    Ordered (M, 2) path of (x, y) between the two most distant skeleton
    pixels (geodesically), found with two shortest-path sweeps over the
    largest connected component.
    """
    points = [tuple(p) for p in skeleton_points(_largest_component(skeleton)).tolist()]
    if len(points) < 2:
        return np.array(points, dtype=np.int32).reshape(-1, 2)

    neighbors = _build_neighbors(points)
    dist, _ = _dijkstra(points[0], neighbors)
    far = max(dist, key=dist.get)
    dist, prev = _dijkstra(far, neighbors)
    end = max(dist, key=dist.get)

    path = []
    node = end
    while node is not None:
        path.append(node)
        node = prev[node]
    return np.array(path, dtype=np.int32)


def path_length(path: np.ndarray, step: int = 1) -> float:
    """
    Polyline length through every `step`-th point (and the last one).

    With step 1 diagonal pixel steps count sqrt(2), which overestimates a
    digital line by up to 8% between the axes and the diagonals; chords
    over a few pixels follow the true direction instead.
    """
    if len(path) < 2:
        return 0.0
    indices = list(range(0, len(path), max(step, 1)))
    if indices[-1] != len(path) - 1:
        indices.append(len(path) - 1)
    steps = np.diff(path[indices].astype(np.float64), axis=0)
    return float(np.sum(np.hypot(steps[:, 0], steps[:, 1])))


def trim_spurs(path: np.ndarray, dist: np.ndarray, spur_factor: float = 2.0, slope: float = SPUR_SLOPE) -> np.ndarray:
    """
    Cut corner spurs off both ends of the path.

    Thinning a blunt end leaves branches from the end of the medial axis
    into the corners, and the main path follows one of them. Along such a
    branch the local radius (distance transform) grows by at least `slope`
    per pixel walked inwards; along the axis it stays nearly flat. Each end
    is cut back to the point maximising radius - slope * distance walked,
    searched within `spur_factor` times the largest radius on the path.
    Only the radius profile is used, so the cut does not depend on the
    orientation or symmetry of the skeleton.
    """
    if len(path) < 3 or spur_factor <= 0:
        return path

    radii = nearest_radius(dist, path).astype(np.float64)
    max_reach = spur_factor * max(float(radii.max()), 1.0)

    def first_kept(ordered: np.ndarray, ordered_radii: np.ndarray) -> int:
        steps = np.diff(ordered.astype(np.float64), axis=0)
        walked = np.concatenate([[0.0], np.cumsum(np.hypot(steps[:, 0], steps[:, 1]))])
        reach = walked <= max_reach
        return int(np.argmax(ordered_radii[reach] - slope * walked[reach]))

    start = first_kept(path, radii)
    end = len(path) - 1 - first_kept(path[::-1], radii[::-1])
    if end - start < 1:
        return path
    if start or end < len(path) - 1:
        log.debug("Trimmed spurs: %d points from start, %d from end", start, len(path) - 1 - end)
    return path[start:end + 1]


def extend_to_boundary(path: np.ndarray, mask: np.ndarray, lookback: int = 5) -> Tuple[float, float]:
    """
    Distance from each path end to the mask boundary along the end tangent.
    Returns (start_extension, end_extension) in pixels.
    """
    if len(path) < 2:
        return 0.0, 0.0
    k = min(lookback, len(path) - 1)
    return _ray_to_boundary(path[0], path[k], mask), _ray_to_boundary(path[-1], path[-1 - k], mask)


def _ray_to_boundary(tip: np.ndarray, inner: np.ndarray, mask: np.ndarray, step: float = 0.5) -> float:
    direction = tip.astype(np.float64) - inner.astype(np.float64)
    norm = math.hypot(direction[0], direction[1])
    if norm == 0:
        return 0.0
    dx, dy = direction / norm
    h, w = mask.shape[:2]
    limit = math.hypot(h, w)

    t = 0.0
    while t < limit:
        t += step
        x = int(round(tip[0] + dx * t))
        y = int(round(tip[1] + dy * t))
        if not (0 <= x < w and 0 <= y < h) or mask[y, x] == 0:
            return max(t - 0.5, 0.0)
    return limit


# ---------------------------------------------------------------------------
# Curvature
# ---------------------------------------------------------------------------

def path_curvature(path: np.ndarray, step: int = 10) -> float:
    """
    Mean turning angle (radians) over consecutive triplets sampled every
    `step` points along an ordered path: 0 for a straight line, pi/2 at a
    right-angle bend.
    """
    if len(path) < 3:
        return 0.0
    indices = list(range(0, len(path), max(step, 1)))
    if indices[-1] != len(path) - 1:
        indices.append(len(path) - 1)
    samples = path[indices].astype(np.float64)
    if len(samples) < 3:
        return 0.0

    total = 0.0
    count = 0
    for p1, p2, p3 in zip(samples[:-2], samples[1:-1], samples[2:]):
        v1 = p2 - p1
        v2 = p3 - p2
        n1 = np.linalg.norm(v1)
        n2 = np.linalg.norm(v2)
        if n1 == 0 or n2 == 0:
            continue
        cos_angle = float(np.dot(v1, v2) / (n1 * n2))
        total += math.acos(min(max(cos_angle, -1.0), 1.0))
        count += 1

    return total / count if count else 0.0


def nearest_radius(dist: np.ndarray, path: np.ndarray) -> Optional[np.ndarray]:
    """Distance-transform values (local radius) at each path point."""
    if len(path) == 0:
        return None
    return dist[path[:, 1], path[:, 0]]
