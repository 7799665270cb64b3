"""
Vision primitives behind a small capability interface
OpenCVBackend delegates to cv2; SoftwareBackend reimplements the same
operations with numpy so the detectors run (and can be tested) without the
native library. Detectors receive a backend explicitly.
"""
import logging
import math
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

from config import settings
from models import HoughLine

logger = logging.getLogger(__name__)


class BufferScope:
    """
    Tracks working buffers acquired during one call and releases them on exit,
    whether the call returns normally or raises
    """

    def __init__(self):
        self._buffers = []
        self.acquired = 0
        self.released = False

    def track(self, buffer):
        self._buffers.append(buffer)
        self.acquired += 1
        return buffer

    def release(self):
        while self._buffers:
            buffer = self._buffers.pop()
            release = getattr(buffer, "release", None)
            if callable(release):
                release()
        self.released = True

    def __enter__(self) -> "BufferScope":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        self.release()
        return False


class VisionBackend:
    """Capability interface for native image-processing primitives"""

    name = "base"

    def scope(self) -> BufferScope:
        return BufferScope()

    def grayscale(self, image: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def resize(self, image: np.ndarray, width: int, height: int) -> np.ndarray:
        raise NotImplementedError

    def gaussian_blur(self, image: np.ndarray, ksize: int, sigma: float = 0) -> np.ndarray:
        raise NotImplementedError

    def morphology_close(self, image: np.ndarray, ksize: Tuple[int, int]) -> np.ndarray:
        raise NotImplementedError

    def canny(self, gray: np.ndarray, low: float, high: float) -> np.ndarray:
        raise NotImplementedError

    def hough_lines(self, edges: np.ndarray, rho: float, theta: float,
                    threshold: int) -> List[HoughLine]:
        raise NotImplementedError

    def adaptive_threshold(self, gray: np.ndarray, block_size: int, c: float) -> np.ndarray:
        raise NotImplementedError


class OpenCVBackend(VisionBackend):
    """Primitives implemented by OpenCV"""

    name = "opencv"

    def grayscale(self, image: np.ndarray) -> np.ndarray:
        if image.ndim == 2:
            return image.copy()
        code = cv2.COLOR_RGBA2GRAY if image.shape[2] == 4 else cv2.COLOR_RGB2GRAY
        return cv2.cvtColor(image, code)

    def resize(self, image: np.ndarray, width: int, height: int) -> np.ndarray:
        shrinking = width < image.shape[1] or height < image.shape[0]
        interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR
        return cv2.resize(image, (int(width), int(height)), interpolation=interpolation)

    def gaussian_blur(self, image: np.ndarray, ksize: int, sigma: float = 0) -> np.ndarray:
        return cv2.GaussianBlur(image, (ksize, ksize), sigma)

    def morphology_close(self, image: np.ndarray, ksize: Tuple[int, int]) -> np.ndarray:
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, ksize)
        return cv2.morphologyEx(image, cv2.MORPH_CLOSE, kernel)

    def canny(self, gray: np.ndarray, low: float, high: float) -> np.ndarray:
        return cv2.Canny(gray, low, high)

    def hough_lines(self, edges: np.ndarray, rho: float, theta: float,
                    threshold: int) -> List[HoughLine]:
        lines = cv2.HoughLines(edges, rho, theta, threshold)
        if lines is None:
            return []
        return [HoughLine(float(r), float(t)) for r, t in lines[:, 0]]

    def adaptive_threshold(self, gray: np.ndarray, block_size: int, c: float) -> np.ndarray:
        return cv2.adaptiveThreshold(
            gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, block_size, c
        )


def _gaussian_kernel(ksize: int, sigma: float) -> np.ndarray:
    if sigma <= 0:
        sigma = 0.3 * ((ksize - 1) * 0.5 - 1) + 0.8
    x = np.arange(ksize, dtype=np.float64) - (ksize - 1) / 2
    kernel = np.exp(-(x ** 2) / (2 * sigma ** 2))
    return kernel / kernel.sum()


def _shifted(padded: np.ndarray, start: int, length: int, axis: int) -> np.ndarray:
    index = [slice(None)] * padded.ndim
    index[axis] = slice(start, start + length)
    return padded[tuple(index)]


def _correlate_axis(data: np.ndarray, kernel: np.ndarray, axis: int, mode: str = "reflect") -> np.ndarray:
    size = len(kernel)
    before = size // 2
    after = size - 1 - before
    if data.shape[axis] <= max(before, after):
        mode = "edge"
    pad = [(0, 0)] * data.ndim
    pad[axis] = (before, after)
    padded = np.pad(data, pad, mode=mode)

    length = data.shape[axis]
    out = np.zeros(data.shape, dtype=np.float64)
    for offset, weight in enumerate(kernel):
        if weight != 0:
            out += weight * _shifted(padded, offset, length, axis)
    return out


def _rank_filter_axis(data: np.ndarray, size: int, before: int, axis: int,
                      reducer: Callable, fill: int) -> np.ndarray:
    pad = [(0, 0)] * data.ndim
    pad[axis] = (before, size - 1 - before)
    padded = np.pad(data, pad, mode="constant", constant_values=fill)

    length = data.shape[axis]
    out = _shifted(padded, 0, length, axis).copy()
    for offset in range(1, size):
        out = reducer(out, _shifted(padded, offset, length, axis))
    return out


def _to_dtype(values: np.ndarray, dtype) -> np.ndarray:
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return np.clip(np.rint(values), info.min, info.max).astype(dtype)
    return values.astype(dtype)


class SoftwareBackend(VisionBackend):
    """Pure numpy primitives following OpenCV's conventions"""

    name = "software"

    SOBEL_SMOOTH = np.array([1.0, 2.0, 1.0])
    SOBEL_DERIVATIVE = np.array([-1.0, 0.0, 1.0])

    def grayscale(self, image: np.ndarray) -> np.ndarray:
        if image.ndim == 2:
            return image.copy()
        rgb = image[:, :, :3].astype(np.float64)
        gray = rgb[:, :, 0] * 0.299 + rgb[:, :, 1] * 0.587 + rgb[:, :, 2] * 0.114
        return _to_dtype(gray, np.uint8)

    def resize(self, image: np.ndarray, width: int, height: int) -> np.ndarray:
        """Bilinear resize with pixel-center alignment"""
        src_h, src_w = image.shape[:2]
        if (src_w, src_h) == (width, height):
            return image.copy()

        xs = np.clip((np.arange(width) + 0.5) * (src_w / width) - 0.5, 0, src_w - 1)
        ys = np.clip((np.arange(height) + 0.5) * (src_h / height) - 0.5, 0, src_h - 1)
        x0 = np.floor(xs).astype(np.intp)
        y0 = np.floor(ys).astype(np.intp)
        x1 = np.minimum(x0 + 1, src_w - 1)
        y1 = np.minimum(y0 + 1, src_h - 1)
        wx = (xs - x0)[None, :, None]
        wy = (ys - y0)[:, None, None]

        data = image.astype(np.float64)
        if data.ndim == 2:
            data = data[:, :, None]
        top = data[y0][:, x0] * (1 - wx) + data[y0][:, x1] * wx
        bottom = data[y1][:, x0] * (1 - wx) + data[y1][:, x1] * wx
        out = top * (1 - wy) + bottom * wy
        if image.ndim == 2:
            out = out[:, :, 0]
        return _to_dtype(out, image.dtype)

    def gaussian_blur(self, image: np.ndarray, ksize: int, sigma: float = 0) -> np.ndarray:
        kernel = _gaussian_kernel(ksize, sigma)
        blurred = _correlate_axis(image.astype(np.float64), kernel, axis=0)
        blurred = _correlate_axis(blurred, kernel, axis=1)
        return _to_dtype(blurred, image.dtype)

    def morphology_close(self, image: np.ndarray, ksize: Tuple[int, int]) -> np.ndarray:
        """Dilate then erode with a rectangular kernel of (width, height)"""
        kw, kh = ksize
        info = np.iinfo(image.dtype)
        dilated = image
        for axis, size in ((1, kw), (0, kh)):
            dilated = _rank_filter_axis(dilated, size, size - 1 - size // 2, axis, np.maximum, info.min)
        closed = dilated
        for axis, size in ((1, kw), (0, kh)):
            closed = _rank_filter_axis(closed, size, size // 2, axis, np.minimum, info.max)
        return closed

    def _sobel(self, gray: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        data = gray.astype(np.float64)
        gx = _correlate_axis(_correlate_axis(data, self.SOBEL_DERIVATIVE, axis=1), self.SOBEL_SMOOTH, axis=0)
        gy = _correlate_axis(_correlate_axis(data, self.SOBEL_DERIVATIVE, axis=0), self.SOBEL_SMOOTH, axis=1)
        return gx, gy

    def canny(self, gray: np.ndarray, low: float, high: float) -> np.ndarray:
        gx, gy = self._sobel(gray)
        ax, ay = np.abs(gx), np.abs(gy)
        magnitude = ax + ay

        padded = np.pad(magnitude, 1)
        left, right = padded[1:-1, :-2], padded[1:-1, 2:]
        up, down = padded[:-2, 1:-1], padded[2:, 1:-1]
        up_left, down_right = padded[:-2, :-2], padded[2:, 2:]
        up_right, down_left = padded[:-2, 2:], padded[2:, :-2]

        tan_22 = math.tan(math.radians(22.5))
        tan_67 = math.tan(math.radians(67.5))
        horizontal = ay < ax * tan_22
        vertical = ~horizontal & (ay > ax * tan_67)
        diagonal = ~horizontal & ~vertical
        same_sign = (gx * gy) > 0

        keep = np.zeros(magnitude.shape, dtype=bool)
        keep |= horizontal & (magnitude > left) & (magnitude >= right)
        keep |= vertical & (magnitude > up) & (magnitude >= down)
        keep |= diagonal & same_sign & (magnitude > up_left) & (magnitude >= down_right)
        keep |= diagonal & ~same_sign & (magnitude > up_right) & (magnitude >= down_left)

        candidate = keep & (magnitude > low)
        strong = candidate & (magnitude > high)
        return self._hysteresis(candidate, strong)

    def _hysteresis(self, candidate: np.ndarray, strong: np.ndarray) -> np.ndarray:
        """Keep candidate pixels 8-connected to a strong pixel"""
        height, width = candidate.shape
        allowed = candidate.ravel().tolist()
        edges = bytearray(height * width)
        stack = np.flatnonzero(strong.ravel()).tolist()
        for index in stack:
            edges[index] = 1

        while stack:
            index = stack.pop()
            y, x = divmod(index, width)
            for dy in (-1, 0, 1):
                ny = y + dy
                if ny < 0 or ny >= height:
                    continue
                for dx in (-1, 0, 1):
                    nx = x + dx
                    if nx < 0 or nx >= width:
                        continue
                    neighbor = ny * width + nx
                    if allowed[neighbor] and not edges[neighbor]:
                        edges[neighbor] = 1
                        stack.append(neighbor)

        mask = np.frombuffer(bytes(edges), dtype=np.uint8).reshape(height, width)
        return mask * np.uint8(255)

    def hough_lines(self, edges: np.ndarray, rho: float, theta: float,
                    threshold: int) -> List[HoughLine]:
        """Standard Hough transform, strongest lines first"""
        height, width = edges.shape
        ys, xs = np.nonzero(edges)
        if len(xs) == 0:
            return []

        num_angles = int(round(math.pi / theta))
        num_rho = int(round(((width + height) * 2 + 1) / rho))
        offset = (num_rho - 1) // 2
        angles = np.arange(num_angles) * theta

        r = xs[:, None] * np.cos(angles)[None, :] + ys[:, None] * np.sin(angles)[None, :]
        r_index = np.rint(r / rho).astype(np.intp) + offset
        accumulator = np.zeros((num_rho, num_angles), dtype=np.int32)
        angle_index = np.broadcast_to(np.arange(num_angles), r_index.shape)
        np.add.at(accumulator, (r_index.ravel(), angle_index.ravel()), 1)

        padded = np.pad(accumulator, 1)
        center = padded[1:-1, 1:-1]
        peaks = (
            (center > threshold)
            & (center > padded[1:-1, :-2]) & (center >= padded[1:-1, 2:])
            & (center > padded[:-2, 1:-1]) & (center >= padded[2:, 1:-1])
        )
        rows, cols = np.nonzero(peaks)
        votes = accumulator[rows, cols]
        order = np.lexsort((rows * num_angles + cols, -votes))
        return [
            HoughLine(float((rows[i] - offset) * rho), float(cols[i] * theta))
            for i in order
        ]

    def adaptive_threshold(self, gray: np.ndarray, block_size: int, c: float) -> np.ndarray:
        kernel = _gaussian_kernel(block_size, 0)
        mean = _correlate_axis(gray.astype(np.float64), kernel, axis=0, mode="edge")
        mean = _correlate_axis(mean, kernel, axis=1, mode="edge")
        binary = gray.astype(np.float64) > (np.rint(mean) - c)
        return binary.astype(np.uint8) * np.uint8(255)


BACKENDS = {
    OpenCVBackend.name: OpenCVBackend,
    SoftwareBackend.name: SoftwareBackend,
}


def create_backend(name: str = None) -> VisionBackend:
    name = (name or settings.VISION_BACKEND).lower()
    if name not in BACKENDS:
        raise ValueError(f"Unknown vision backend '{name}'. Options: {', '.join(sorted(BACKENDS))}")
    return BACKENDS[name]()


class BackendProvider:
    """Creates the configured backend on first use and hands out the same instance"""

    def __init__(self, name: str = None, factory: Optional[Callable[[], VisionBackend]] = None):
        self.name = name
        self._factory = factory
        self._backend: Optional[VisionBackend] = None

    def get(self) -> VisionBackend:
        if self._backend is None:
            self._backend = self._factory() if self._factory else create_backend(self.name)
            logger.debug(f"Initialized {self._backend.name} vision backend")
        return self._backend


def resolve_backend(backend=None) -> VisionBackend:
    """Accept a backend, a provider or None (configured default)"""
    if isinstance(backend, VisionBackend):
        return backend
    if isinstance(backend, BackendProvider):
        return backend.get()
    return BackendProvider().get()
