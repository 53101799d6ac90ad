"""Linear rescale to a target range."""

import numpy as np

from ..steps import NormalizeConf
from .common import normalize


def gen_normalize(hmap: np.ndarray, conf: NormalizeConf) -> None:
    normalize(hmap, conf.min, conf.max)
