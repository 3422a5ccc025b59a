#!/usr/bin/env python3
"""
Script to evaluate matching performance on image pairs related by known homographies
"""

import argparse
import os
import pickle
import numpy as np
from pathlib import Path
import sys
import time

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from acsift.models.sift import Sift
from acsift.utils.benchmark import benchmark, create_curves, validate_matches
from acsift.utils.visualization import SiftVisualizer
from acsift.datasets.image_pairs import ImagePairDataset


def parse_args():
    parser = argparse.ArgumentParser(description='Evaluate matching performance')
    parser.add_argument('dataset_dir', help='Directory containing image pairs')
    parser.add_argument('--pairs_file', help='File listing image pairs (and homographies) to evaluate')
    parser.add_argument('--output_dir', default='./evaluation_results',
                        help='Directory to save evaluation results')
    parser.add_argument('--config', default='configs/acsift/default.py',
                        help='Configuration file')
    parser.add_argument('--benchmark', action='store_true',
                        help='Compare the criteria and combinations of the configuration')
    parser.add_argument('--save_matches', action='store_true',
                        help='Save matching visualizations')
    parser.add_argument('--num_pairs', type=int, default=None,
                        help='Number of pairs to evaluate (for testing)')

    return parser.parse_args()


def evaluate_image_pair(config, sample):
    """Match one pair with the configured criterion and validate against the homography"""
    start_time = time.time()

    sift = Sift.from_config([sample['image1'], sample['image2']], config, verbose=False)
    matches = sift.match(0, 1)
    matching_time = time.time() - start_time

    metrics = {
        'pair_id': sample['pair_id'],
        'matching_time': matching_time,
        'num_keypoints_1': len(sift.scale_spaces[0].keypoints),
        'num_keypoints_2': len(sift.scale_spaces[1].keypoints),
        'num_matches': len(matches),
    }

    if sample['homography'] is not None:
        validate_matches(matches, sample['homography'])
        num_valid = sum(match.is_valid for match in matches)
        metrics['num_valid_matches'] = num_valid
        metrics['precision'] = num_valid / len(matches) if matches else 0.0

    return metrics, sift, matches


def benchmark_image_pair(config, sample):
    """Evaluate every configured criterion and descriptor combination on one pair"""
    if sample['homography'] is None:
        raise ValueError("Benchmarking requires a homography")

    settings = config.get('benchmark', {})
    kwargs = {}
    for section in ('scale_space', 'detection', 'orientation'):
        kwargs.update(config.get(section, {}))
    if 'descriptors' in config:
        kwargs['descriptors'] = config['descriptors']

    _, matches, curves = benchmark(
        [sample['image1'], sample['image2']], sample['homography'],
        criteria=settings.get('criteria', ('NN-DT', 'NN-DR', 'NN-AC')),
        combinations=settings.get('combinations'),
        verbose=False, **kwargs
    )
    metrics = {'pair_id': sample['pair_id']}
    for name, curve in curves.items():
        metrics[name] = {
            'num_matches': len(curve['true']),
            'num_valid_matches': int(curve['true'].sum()),
        }
    return metrics, curves


def compute_summary_statistics(all_metrics):
    """Compute summary statistics across all evaluated pairs"""
    if not all_metrics:
        return {}

    times = np.array([m['matching_time'] for m in all_metrics])
    matches = np.array([m['num_matches'] for m in all_metrics])
    precisions = np.array([m['precision'] for m in all_metrics if 'precision' in m])

    return {
        'num_pairs_evaluated': len(all_metrics),
        'average_matching_time': float(np.mean(times)),
        'std_matching_time': float(np.std(times)),
        'average_matches': float(np.mean(matches)),
        'std_matches': float(np.std(matches)),
        'average_precision': float(np.mean(precisions)) if len(precisions) else None,
        'success_rate': float(np.mean(matches >= 10)),  # At least 10 matches
        'detailed_metrics': all_metrics
    }


def main():
    args = parse_args()

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if os.path.exists(args.config):
        import importlib.util
        spec = importlib.util.spec_from_file_location("config", args.config)
        config_module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(config_module)
        config = config_module.config
    else:
        print(f"Warning: configuration {args.config} not found, using defaults")
        config = {}

    dataset = ImagePairDataset(args.dataset_dir, args.pairs_file)
    if args.num_pairs:
        dataset.image_pairs = dataset.image_pairs[:args.num_pairs]

    print(f"Evaluating {len(dataset)} image pairs...")

    all_metrics = []
    all_curves = []
    for i in range(len(dataset)):
        try:
            sample = dataset[i]
            print(f"Evaluating pair {i+1}/{len(dataset)}: "
                  f"{sample['image1_path']} - {sample['image2_path']}")

            if args.benchmark:
                metrics, curves = benchmark_image_pair(config, sample)
                all_curves.append(curves)
                for name, values in metrics.items():
                    if name != 'pair_id':
                        print(f"  {name}: {values['num_valid_matches']}/{values['num_matches']} valid")
                if args.save_matches:
                    SiftVisualizer.plot_curves(curves, title=f"Pair {i}",
                                               save_path=str(output_dir / f"curves_pair_{i:03d}.png"))
                all_metrics.append(metrics)
                continue

            metrics, sift, matches = evaluate_image_pair(config, sample)
            all_metrics.append(metrics)
            print(f"  Matches: {metrics['num_matches']} "
                  f"(valid: {metrics.get('num_valid_matches', 'n/a')}, "
                  f"time: {metrics['matching_time']:.2f}s)")

            if sample['homography'] is not None:
                all_curves.append({config.get('matching', {}).get('criterion', 'NN-DR'):
                                   create_curves(matches)})

            if args.save_matches:
                SiftVisualizer.plot_matches(sample['image1'], sample['image2'], matches,
                                            title=f"Pair {i}",
                                            save_path=str(output_dir / f"matches_pair_{i:03d}.png"))

        except Exception as e:
            print(f"  Error: {e}")
            continue

    summary = {} if args.benchmark else compute_summary_statistics(all_metrics)

    results_file = output_dir / 'evaluation_results.pkl'
    with open(results_file, 'wb') as f:
        pickle.dump({
            'summary': summary,
            'metrics': all_metrics,
            'curves': all_curves,
            'config': config,
            'args': vars(args)
        }, f)

    print(f"\nEvaluation Summary:")
    print(f"=" * 50)
    if summary:
        print(f"Pairs evaluated: {summary['num_pairs_evaluated']}")
        print(f"Average matching time: {summary['average_matching_time']:.2f} ± {summary['std_matching_time']:.2f} seconds")
        print(f"Average matches: {summary['average_matches']:.1f} ± {summary['std_matches']:.1f}")
        if summary['average_precision'] is not None:
            print(f"Average precision: {summary['average_precision']:.2f}")
        print(f"Success rate (≥10 matches): {summary['success_rate']:.2f}")
    else:
        print(f"Pairs evaluated: {len(all_metrics)}")
    print(f"\nResults saved to: {output_dir}")


if __name__ == "__main__":
    main()
