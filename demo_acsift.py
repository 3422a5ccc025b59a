#!/usr/bin/env python3
"""
Complete acsift demonstration script

Creates a synthetic color image and a transformed copy whose homography is
known, extracts keypoints and descriptors, matches them with several
decision criteria and checks the matches against the homography.

Usage:
    python demo_acsift.py [--save]

Features demonstrated:
- Gaussian scale space and Laplacian/Harris keypoint detection
- Orientation assignment
- Gray (SIFT) and color (HUE-NORM) descriptors
- NN-DT, NN-DR and NN-AC decision criteria
- Validation of matches with the known homography
"""

import sys
import os
import argparse
import time
import numpy as np
import cv2

# Add src to path for development
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

try:
    from acsift.models.sift import Sift
    from acsift.utils.benchmark import (benchmark, skew_homography, validate_matches,
                                        warp_image)
    from acsift.utils.visualization import SiftVisualizer
except ImportError as e:
    print(f"Error importing acsift modules: {e}")
    print("Run: pip install -e . from the project root directory")
    sys.exit(1)


def create_sample_images(size=(256, 256), skew=1.2):
    """
    Create a textured color image and a skewed copy with a color cast

    Returns:
        tuple: (image1, image2, homography)
    """
    print("  Creating base texture...")
    rng = np.random.RandomState(42)
    height, width = size

    y, x = np.mgrid[0:height, 0:width] / max(size) * 10
    base = 0.5 + 0.2 * np.sin(x) * np.cos(1.3 * y) + 0.1 * np.sin(3 * x + y)
    image1 = np.stack([base, np.roll(base, 7, axis=1), np.roll(base, 13, axis=0)], axis=2)

    print("  Adding colored blobs...")
    for _ in range(40):
        center = (int(rng.randint(20, width - 20)), int(rng.randint(20, height - 20)))
        radius = int(rng.randint(3, 12))
        color = tuple(float(c) for c in rng.uniform(0, 1, 3))
        cv2.circle(image1, center, radius, color, -1)

    image1 = cv2.GaussianBlur(image1.astype(np.float32), (5, 5), 1.0)
    image1 = np.clip(image1 + rng.normal(0, 0.01, image1.shape), 0, 1).astype(np.float32)

    print("  Applying geometric transformation and color change...")
    homography = skew_homography(image1.shape, skew)
    image2 = warp_image(image1, homography)
    image2 = np.clip(image2 * np.array([1.1, 1.0, 0.9], dtype=np.float32), 0, 1)

    return image1, image2, homography


def main(save=False):
    print("acsift Complete Pipeline Demonstration")
    print("=" * 50)

    print("Step 1: Creating synthetic images...")
    image1, image2, homography = create_sample_images()

    print("\nStep 2: Matching with the default NN-DR criterion...")
    start_time = time.time()
    sift = Sift([image1, image2], descriptors=["SIFT", "HUE-NORM"], criterion="NN-DR",
                threshold=0.8)
    try:
        matches = sift.match(0, 1)
    except Exception as e:
        print(f"  ✗ Error during matching: {e}")
        import traceback
        traceback.print_exc()
        return False
    matching_time = time.time() - start_time

    validate_matches(matches, homography)
    n_valid = sum(match.is_valid for match in matches)
    print(f"  ✓ {len(matches)} matches, {n_valid} consistent with the homography "
          f"({matching_time:.2f} seconds)")

    print("\nStep 3: Comparing decision criteria...")
    _, all_matches, curves = benchmark([image1, image2], homography,
                                       criteria=("NN-DT", "NN-DR", "NN-AC"),
                                       combinations={"BW": ["SIFT"], "COLOR": ["SIFT", "HUE-NORM"]},
                                       descriptors=["SIFT", "HUE-NORM"], verbose=False)
    for name, curve in curves.items():
        best = curve['true'][:50].sum()
        print(f"  {name:6s}: {best}/50 valid among the 50 best matches")

    output_dir = "demo_results"
    if save:
        os.makedirs(output_dir, exist_ok=True)
        with open(os.path.join(output_dir, "matches.txt"), "w") as f:
            f.write(sift.matches_to_string(0, 1))
        with open(os.path.join(output_dir, "keypoints1.txt"), "w") as f:
            f.write(sift.scale_spaces[0].keypoints_to_string())

    print("\nStep 4: Visualizing results...")
    try:
        SiftVisualizer.plot_matches(image1, image2, matches, title="NN-DR matches",
                                    save_path=os.path.join(output_dir, "matches.png") if save else None)
        SiftVisualizer.plot_curves(curves,
                                   save_path=os.path.join(output_dir, "curves.png") if save else None)
        print("  ✓ Visualization completed")
    except Exception as e:
        print(f"  ✗ Visualization error: {e}")

    print("\n" + "=" * 60)
    print("DEMONSTRATION SUMMARY")
    print("=" * 60)
    if n_valid >= 10:
        print("✓ SUCCESS: the transformed image was matched")
    else:
        print("⚠ WARNING: Limited matches found, try lowering the thresholds")

    print(f"\nNext steps:")
    print(f"  - Run: python scripts/extract_features.py <image_directory>")
    print(f"  - Run: python scripts/evaluate.py <dataset_directory> --pairs_file pairs.txt --benchmark")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='acsift demonstration')
    parser.add_argument('--save', action='store_true', help='Save results to demo_results/')
    args = parser.parse_args()

    if args.save:
        import matplotlib
        matplotlib.use('Agg')

    try:
        success = main(save=args.save)
        print("\n🎉 Demo completed successfully!" if success else
              "\n❌ Demo failed. Please check the error messages above.")
    except KeyboardInterrupt:
        print(f"\n\nDemo interrupted by user.")
