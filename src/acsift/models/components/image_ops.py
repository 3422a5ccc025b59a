import numpy as np
import cv2
from skimage.util import img_as_float32
from typing import Dict

# Gaussian kernels are truncated where they fall under 10^-PRECISION
PRECISION = 3

IRAC2 = 0.70710678
IRAC8 = 0.35355339
IRAC2P2 = 0.29289322
IRAC8P4 = 1.0 / 6.8284271

GRADIENT_X_KERNEL = IRAC2P2 * np.array([[-IRAC8, 0.0, IRAC8],
                                        [-1.0, 0.0, 1.0],
                                        [-IRAC8, 0.0, IRAC8]], dtype=np.float32)
GRADIENT_Y_KERNEL = GRADIENT_X_KERNEL.T.copy()
LAPLACIAN_KERNEL = IRAC8P4 * np.array([[IRAC2, 1.0, IRAC2],
                                       [1.0, 0.0, 1.0],
                                       [IRAC2, 1.0, IRAC2]], dtype=np.float32)
LAPLACIAN_KERNEL[1, 1] = -1.0

# Linear RGB conversions, one output channel per row
OHTA_MATRIX = np.array([
    [1 / np.sqrt(3), 1 / np.sqrt(3), 1 / np.sqrt(3)],
    [1 / np.sqrt(2), 0.0, -1 / np.sqrt(2)],
    [-1 / np.sqrt(6), 2 / np.sqrt(6), -1 / np.sqrt(6)],
], dtype=np.float32)
OPPONENT_MATRIX = np.array([
    [1 / np.sqrt(3), 1 / np.sqrt(3), 1 / np.sqrt(3)],
    [1 / np.sqrt(2), -1 / np.sqrt(2), 0.0],
    [1 / np.sqrt(6), 1 / np.sqrt(6), -2 / np.sqrt(6)],
], dtype=np.float32)

COLORSPACES = ("RGB", "HSL", "Ohta", "Opponent")


def im2single(image: np.ndarray) -> np.ndarray:
    """
    Convert an image to a float32 RGB array with values in [0, 1]

    Args:
        image: Gray (H, W) or color (H, W, C>=3) image, integer or float

    Returns:
        Contiguous float32 array of shape (H, W, 3)
    """
    image = np.asarray(image)
    if image.ndim == 2:
        image = np.stack([image, image, image], axis=2)
    elif image.ndim == 3 and image.shape[2] >= 3:
        image = image[:, :, :3]
    else:
        raise ValueError(f"Image must be a gray or RGB image, got shape {image.shape}")
    return np.ascontiguousarray(img_as_float32(image))


def gaussian_kernel_size(sigma: float) -> int:
    half = int(np.ceil(sigma * np.sqrt(PRECISION * 2 * np.log(10))))
    return 2 * half + 1


def gaussian_blur(image: np.ndarray, sigma: float) -> np.ndarray:
    """Isotropic Gaussian blur of a 2-D or multi-channel float32 image"""
    image = np.ascontiguousarray(image, dtype=np.float32)
    if sigma <= 0:
        return image.copy()
    ksize = gaussian_kernel_size(sigma)
    return cv2.GaussianBlur(image, (ksize, ksize), sigmaX=sigma, sigmaY=sigma,
                            borderType=cv2.BORDER_REFLECT)


def rgb2gray(image: np.ndarray) -> np.ndarray:
    return (0.3 * image[:, :, 0] + 0.59 * image[:, :, 1] + 0.11 * image[:, :, 2]).astype(np.float32)


def _filter(image: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    out = cv2.filter2D(image, cv2.CV_32F, kernel, borderType=cv2.BORDER_CONSTANT)
    # Only interior pixels have a full 3x3 support
    out[0, :] = 0
    out[-1, :] = 0
    out[:, 0] = 0
    out[:, -1] = 0
    return out


def image_gradient(image: np.ndarray, laplacian: bool = True) -> Dict[str, np.ndarray]:
    """
    Compute discrete differential operators on a gray image

    Args:
        image: 2-D float image
        laplacian: Whether to also compute the 8-neighbour Laplacian

    Returns:
        Dictionary with 'x', 'y', 'norm', 'phase' and optionally 'laplacian'.
        The phase is expressed in turns in [0, 1), measured with the row
        axis pointing down.
    """
    image = np.ascontiguousarray(image, dtype=np.float32)
    grad_x = _filter(image, GRADIENT_X_KERNEL)
    grad_y = _filter(image, GRADIENT_Y_KERNEL)

    phase = np.arctan2(grad_y, grad_x) / (2 * np.pi)
    phase[phase < 0] += 1

    gradient = {
        "x": grad_x,
        "y": grad_y,
        "norm": np.sqrt(grad_x * grad_x + grad_y * grad_y),
        "phase": phase.astype(np.float32),
    }
    if laplacian:
        gradient["laplacian"] = _filter(image, LAPLACIAN_KERNEL)
    return gradient


def _rgb_to_hsl(image: np.ndarray) -> np.ndarray:
    R, G, B = image[:, :, 0], image[:, :, 1], image[:, :, 2]
    hue = np.arctan2(np.sqrt(3) * (G - B), 2 * R - G - B) / (2 * np.pi)
    hue[hue < 0] += 1
    saturation = image.max(axis=2) - image.min(axis=2)
    lightness = image.mean(axis=2)
    return np.stack([hue, saturation, lightness], axis=2).astype(np.float32)


def convert_color(image: np.ndarray, conversion: str) -> np.ndarray:
    """
    Apply a named colorspace conversion such as "RGB to Ohta"

    Hue-like channels are expressed in turns.
    """
    try:
        source, target = [part.strip() for part in conversion.split(" to ")]
    except ValueError:
        raise ValueError(f"Malformed colorspace conversion: {conversion!r}")

    if source != "RGB" or target not in COLORSPACES:
        raise ValueError(f"Unknown colorspace conversion: {conversion!r}")

    if target == "RGB":
        return image.copy()
    if target == "HSL":
        return _rgb_to_hsl(image)
    matrix = OHTA_MATRIX if target == "Ohta" else OPPONENT_MATRIX
    return np.tensordot(image, matrix.T, axes=1).astype(np.float32)
