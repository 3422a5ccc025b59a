import matplotlib.pyplot as plt
from matplotlib.patches import Circle, Wedge
import numpy as np
from typing import Dict, Optional, Sequence

from ..models.components.descriptor import DescriptorScheme
from ..models.components.keypoint import Keypoint
from ..models.components.match import Match


class SiftVisualizer:
    """Visualization utilities for keypoints, matches and descriptors with saving capability"""

    @staticmethod
    def _finish(title: str, save_path: Optional[str], what: str):
        plt.suptitle(title, fontsize=16, fontweight='bold')
        plt.tight_layout()

        if save_path:
            plt.savefig(save_path, dpi=150, bbox_inches='tight')
            print(f"  {what} saved to: {save_path}")
            plt.close()
        else:
            plt.show()

    @staticmethod
    def _show(ax, image: np.ndarray):
        if len(image.shape) == 3:
            ax.imshow(np.clip(image, 0, 1))
        else:
            ax.imshow(image, cmap='gray')

    @staticmethod
    def plot_keypoints(image: np.ndarray, keypoints: Sequence[Keypoint],
                       title: str = "Keypoints", figsize: tuple = (12, 8),
                       show_support: bool = True, save_path: Optional[str] = None):
        """
        Plot keypoints with their scale and orientation

        Args:
            image: Input image
            keypoints: Keypoints to draw
            title: Plot title
            figsize: Figure size
            show_support: Draw the support circle of radius factor_size * sigma,
                otherwise a circle of radius sigma
            save_path: Path to save the figure (optional)
        """
        fig, ax = plt.subplots(figsize=figsize)
        SiftVisualizer._show(ax, image)

        for key in keypoints:
            radius = key.sigma * (key.factor_size if show_support else 1)
            ax.add_patch(Circle((key.x, key.y), radius, fill=False, color='yellow',
                                alpha=0.7, linewidth=0.8))
            if key.orientation is not None:
                angle = 2 * np.pi * key.orientation
                ax.plot([key.x, key.x + radius * np.cos(angle)],
                        [key.y, key.y + radius * np.sin(angle)], 'r-', linewidth=0.8)

        ax.set_title(f'{len(keypoints)} keypoints', fontsize=12, fontweight='bold')
        ax.axis('off')
        SiftVisualizer._finish(title, save_path, "Keypoints plot")

    @staticmethod
    def plot_matches(image1: np.ndarray, image2: np.ndarray, matches: Sequence[Match],
                     title: str = "Matches", figsize: tuple = (16, 8), max_matches: int = 200,
                     save_path: Optional[str] = None):
        """
        Plot matches with connecting lines on a side-by-side image

        Validated matches are drawn in green, the others in red.

        Args:
            image1, image2: Input images
            matches: Matches, best first
            title: Plot title
            figsize: Figure size
            max_matches: Maximum number of matches drawn
            save_path: Path to save the figure (optional)
        """
        h1, w1 = image1.shape[:2]
        h2, w2 = image2.shape[:2]
        shape = (max(h1, h2), w1 + w2) + image1.shape[2:]
        combined = np.zeros(shape, dtype=np.float32)
        combined[:h1, :w1] = image1
        combined[:h2, w1:w1 + w2] = image2

        fig, ax = plt.subplots(figsize=figsize)
        SiftVisualizer._show(ax, combined)

        shown = list(matches)[:max_matches]
        for match in shown:
            k1, k2 = match.query_keypoint, match.candidate_keypoint
            color = 'g-' if match.is_valid else 'r-'
            ax.plot([k1.x, k2.x + w1], [k1.y, k2.y], color, alpha=0.6, linewidth=1)
        if shown:
            ax.scatter([m.query_keypoint.x for m in shown], [m.query_keypoint.y for m in shown],
                       c='yellow', s=15, edgecolors='black', linewidth=0.5)
            ax.scatter([m.candidate_keypoint.x + w1 for m in shown],
                       [m.candidate_keypoint.y for m in shown],
                       c='yellow', s=15, edgecolors='black', linewidth=0.5)

        n_valid = sum(match.is_valid for match in shown)
        ax.set_title(f'{len(shown)} matches ({n_valid} validated)', fontsize=12, fontweight='bold')
        ax.axis('off')
        SiftVisualizer._finish(title, save_path, "Matches plot")

    @staticmethod
    def plot_descriptor_layout(scheme: DescriptorScheme, orientation: float = 0.0,
                               figsize: tuple = (6, 6), save_path: Optional[str] = None):
        """Draw the rings and sectors of a descriptor scheme, numbered by histogram index"""
        fig, ax = plt.subplots(figsize=figsize)
        colors = plt.cm.tab20(np.linspace(0, 1, scheme.n_sector))

        number = 0
        inner = 0.0
        for count, outer in zip(scheme.sectors, scheme.rings):
            for s in range(count):
                # Sectors are centered on multiples of 1 / count turns
                start = (orientation + (s - 0.5) / count) * 360
                end = (orientation + (s + 0.5) / count) * 360
                ax.add_patch(Wedge((0, 0), outer, start, end, width=outer - inner,
                                   facecolor=colors[number], edgecolor='black', alpha=0.8))
                middle = np.deg2rad((start + end) / 2)
                radius = (inner + outer) / 2 if inner > 0 or count > 1 else 0
                ax.text(radius * np.cos(middle), radius * np.sin(middle), str(number),
                        ha='center', va='center', fontweight='bold')
                number += 1
            inner = outer

        ax.set_xlim(-1.05, 1.05)
        ax.set_ylim(1.05, -1.05)
        ax.set_aspect('equal')
        ax.axis('off')
        SiftVisualizer._finish(f'{scheme.name} layout', save_path, "Descriptor layout")

    @staticmethod
    def plot_curves(curves: Dict[str, Dict[str, np.ndarray]], title: str = "Matching curves",
                    figsize: tuple = (8, 6), save_path: Optional[str] = None):
        """
        Plot the number of correct matches against the number of wrong matches
        when the threshold increases, one curve per criterion
        """
        fig, ax = plt.subplots(figsize=figsize)
        for name, curve in curves.items():
            ax.plot(np.cumsum(curve['false']), np.cumsum(curve['true']), label=name, linewidth=1.5)

        ax.set_xlabel('False matches')
        ax.set_ylabel('True matches')
        ax.grid(True, alpha=0.3)
        if curves:
            ax.legend(loc='lower right')
        SiftVisualizer._finish(title, save_path, "Curves plot")
