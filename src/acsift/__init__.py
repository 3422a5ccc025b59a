"""acsift - SIFT-family keypoint detection, description and a-contrario matching"""

__version__ = "1.0.0"
__author__ = "acsift Team"

from .models.sift import Sift
from .models.components.scale_space import ScaleSpace
from .models.components.descriptor import DescriptorScheme, get_descriptor
from .utils.visualization import SiftVisualizer

__all__ = ['Sift', 'ScaleSpace', 'DescriptorScheme', 'get_descriptor', 'SiftVisualizer']
