#!/usr/bin/env python3
"""
Script to extract keypoints and descriptors from images and export them as text
"""

import argparse
import os
import pickle
import numpy as np
from pathlib import Path
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from acsift.models.sift import Sift
from acsift.utils.visualization import SiftVisualizer
from acsift.datasets.image_pairs import ImagePairDataset, IMAGE_EXTENSIONS


def parse_args():
    parser = argparse.ArgumentParser(description='Extract keypoints and descriptors from images')
    parser.add_argument('input_dir', help='Directory containing input images')
    parser.add_argument('--output_dir', default='./features',
                        help='Directory to save extracted features')
    parser.add_argument('--config', default='configs/acsift/default.py',
                        help='Configuration file')
    parser.add_argument('--descriptors', nargs='+', default=None,
                        help='Descriptor presets overriding the configuration')
    parser.add_argument('--visualize', action='store_true',
                        help='Save visualization of extracted keypoints')
    parser.add_argument('--image_extensions', nargs='+', default=list(IMAGE_EXTENSIONS),
                        help='Image file extensions to process')

    return parser.parse_args()


def load_config(config_path):
    """Load configuration from Python file"""
    if os.path.exists(config_path):
        import importlib.util
        spec = importlib.util.spec_from_file_location("config", config_path)
        config_module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(config_module)
        return config_module.config
    print(f"Warning: configuration {config_path} not found, using defaults")
    return {}


def extract_features_from_image(config, image_path, output_dir, descriptors=None, visualize=False):
    """Extract features from a single image and write the text exports"""
    print(f"Processing {image_path}...")

    image = ImagePairDataset.load_image(str(image_path))
    overrides = {'verbose': False}
    if descriptors:
        overrides['descriptors'] = descriptors
    sift = Sift.from_config([image], config, **overrides)
    sift.compute_scale_space()
    sift.apply_scale_space_threshold()
    sift.compute_main_orientations()
    sift.compute_descriptors()

    scale_space = sift.scale_spaces[0]
    stem = Path(image_path).stem
    keypoint_file = output_dir / f"{stem}_keypoints.txt"
    keypoint_file.write_text(scale_space.keypoints_to_string())

    descriptor_files = []
    for scheme in sift.descriptors:
        descriptor_file = output_dir / f"{stem}_{scheme.name}.txt"
        descriptor_file.write_text(scale_space.descriptors_to_string(scheme.name))
        descriptor_files.append(str(descriptor_file))

    features = {
        'image_path': str(image_path),
        'image_shape': image.shape,
        'num_maxima': len(scale_space.max_laplacian),
        'num_keypoints': len(scale_space.keypoints),
        'keypoint_file': str(keypoint_file),
        'descriptor_files': descriptor_files,
    }
    print(f"Extracted {features['num_keypoints']} keypoints "
          f"from {features['num_maxima']} Laplacian maxima")

    if visualize:
        SiftVisualizer.plot_keypoints(image, scale_space.keypoints,
                                      title=f"Keypoints: {Path(image_path).name}",
                                      save_path=str(output_dir / f"{stem}_keypoints.png"))

    return features


def main():
    args = parse_args()

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    config = load_config(args.config)

    input_dir = Path(args.input_dir)
    image_files = set()
    for ext in args.image_extensions:
        image_files.update(input_dir.glob(f"*{ext}"))
        image_files.update(input_dir.glob(f"*{ext.upper()}"))

    if not image_files:
        print(f"No images found in {input_dir} with extensions {args.image_extensions}")
        return

    print(f"Found {len(image_files)} images to process")

    all_features = []
    for image_path in sorted(image_files):
        try:
            all_features.append(extract_features_from_image(
                config, image_path, output_dir, args.descriptors, args.visualize
            ))
        except Exception as e:
            print(f"Error processing {image_path}: {e}")
            continue

    counts = [f['num_keypoints'] for f in all_features]
    summary = {
        'total_images': len(all_features),
        'total_keypoints': sum(counts),
        'average_keypoints_per_image': float(np.mean(counts)) if counts else 0.0,
        'config': config,
        'features': all_features
    }

    summary_file = output_dir / 'extraction_summary.pkl'
    with open(summary_file, 'wb') as f:
        pickle.dump(summary, f)

    print(f"\nFeature extraction completed!")
    print(f"Processed {summary['total_images']} images")
    print(f"Extracted {summary['total_keypoints']} total keypoints")
    print(f"Average {summary['average_keypoints_per_image']:.1f} keypoints per image")
    print(f"Results saved to {output_dir}")


if __name__ == "__main__":
    main()
