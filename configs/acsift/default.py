# Configuration for keypoint detection, description and matching

config = {
    "scale_space": {
        "n_scale": 13,
        "sigma_init": 0.63,
        "scale_ratio": 1.26,
    },

    "detection": {
        "lap_thresh": 4e-3,
        "harris_thresh": 1e4,
        "factor_size": 12,  # support half-size in units of sigma
    },

    "orientation": {
        "algorithm": "max",  # "max" or "ac"
        "orientation_bins": 36,
    },

    # Preset names or keyword dicts for DescriptorScheme
    "descriptors": [
        "SIFT",
        "HUE-NORM",
    ],

    "matching": {
        "criterion": "NN-DR",  # NN-DT, NN-DR, NN-AC or AC
        "threshold": 0.7,
    },

    "benchmark": {
        "criteria": ["NN-DT", "NN-DR", "NN-AC"],
        "combinations": {
            "BW": ["SIFT"],
            "COLOR": ["SIFT", "HUE-NORM"],
        },
    },
}
