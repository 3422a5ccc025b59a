import os
import cv2
import numpy as np
from skimage.util import img_as_float32
from typing import List, Optional, Tuple

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.tif', '.tiff', '.bmp', '.ppm')


class ImagePairDataset:
    """
    Pairs of color images to match, optionally with the homography
    relating them (3x3 matrix stored as text, as in the Oxford affine
    benchmark files)
    """

    def __init__(self,
                 data_dir: str,
                 image_pairs_file: Optional[str] = None,
                 transform=None):
        """
        Initialize the dataset

        Args:
            data_dir: Directory containing the images
            image_pairs_file: Text file with one pair per line:
                `image1 image2 [homography_file]`
            transform: Optional callable applied to each sample
        """
        self.data_dir = data_dir
        self.transform = transform

        if image_pairs_file:
            self.image_pairs = self._load_image_pairs(image_pairs_file)
        else:
            self.image_pairs = self._discover_image_pairs()

    def _load_image_pairs(self, pairs_file: str) -> List[Tuple[str, str, Optional[str]]]:
        pairs = []
        with open(pairs_file, 'r') as f:
            for line in f:
                fields = line.split()
                if not fields or fields[0].startswith('#'):
                    continue
                if len(fields) not in (2, 3):
                    raise ValueError(f"Malformed pair line: {line.strip()!r}")
                pairs.append((fields[0], fields[1], fields[2] if len(fields) == 3 else None))
        return pairs

    def _discover_image_pairs(self) -> List[Tuple[str, str, Optional[str]]]:
        """Pair consecutive images of the directory"""
        image_files = sorted(f for f in os.listdir(self.data_dir)
                             if f.lower().endswith(IMAGE_EXTENSIONS))
        return [(image_files[i], image_files[i + 1], None)
                for i in range(0, len(image_files) - 1, 2)]

    @staticmethod
    def load_image(path: str) -> np.ndarray:
        """Load an image as a float32 RGB array in [0, 1]"""
        image = cv2.imread(path, cv2.IMREAD_COLOR)
        if image is None:
            raise ValueError(f"Could not load image: {path}")
        return img_as_float32(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))

    def __len__(self):
        return len(self.image_pairs)

    def __getitem__(self, idx):
        name1, name2, homography_name = self.image_pairs[idx]
        img1_path = os.path.join(self.data_dir, name1)
        img2_path = os.path.join(self.data_dir, name2)

        homography = None
        if homography_name is not None:
            homography = np.loadtxt(os.path.join(self.data_dir, homography_name)).reshape(3, 3)

        sample = {
            'image1': self.load_image(img1_path),
            'image2': self.load_image(img2_path),
            'homography': homography,
            'pair_id': idx,
            'image1_path': img1_path,
            'image2_path': img2_path
        }

        if self.transform:
            sample = self.transform(sample)

        return sample


class ImagePairTransforms:
    """Common transforms for image pair samples"""

    @staticmethod
    def resize(scale: float = 0.5):
        """Rescale both images and update the homography accordingly"""
        def _resize(sample):
            for key in ('image1', 'image2'):
                sample[key] = cv2.resize(sample[key], None, fx=scale, fy=scale,
                                         interpolation=cv2.INTER_AREA)
            if sample['homography'] is not None:
                zoom = np.diag([scale, scale, 1.0])
                sample['homography'] = zoom @ sample['homography'] @ np.linalg.inv(zoom)
            return sample
        return _resize

    @staticmethod
    def to_gray(sample):
        """Replace colors by luminance, replicated on three channels"""
        for key in ('image1', 'image2'):
            gray = cv2.cvtColor(sample[key], cv2.COLOR_RGB2GRAY)
            sample[key] = np.stack([gray, gray, gray], axis=2)
        return sample
