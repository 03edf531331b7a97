"""Type aliases for flexaccept."""

from typing import Literal, TypeAlias

import numpy as np
from numpy.typing import NDArray

# Matrix types
FloatArray: TypeAlias = NDArray[np.float64]
IntArray: TypeAlias = NDArray[np.int64]
BoolArray: TypeAlias = NDArray[np.bool_]

# Survey experiments: electric-vehicle charging and heat-pump operation
Experiment: TypeAlias = Literal["EV", "HP"]
EXPERIMENTS: tuple[str, ...] = ("EV", "HP")

# Replicate 0 is the artifact frozen at the point estimate
VALIDATED_INDEX: int = 0
