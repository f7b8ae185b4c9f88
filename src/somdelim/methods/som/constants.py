"""Constants and sentinel values for the SOM module."""

import numpy as np

# Error handling conventions:
# 1. Distances that cannot be computed are INVALID_DISTANCE (np.inf so argmin skips them)
# 2. Index lookups that fail return INVALID_INDEX (-1)
# 3. Operations that cannot proceed raise a DelimitationError subclass

INVALID_DISTANCE = np.inf
INVALID_INDEX = -1

# Fraction of the largest unit distance used as the starting radius
INITIAL_RADIUS_QUANTILE = 2.0 / 3.0

# Below this radius only the winning unit is updated
MIN_NEIGHBOURHOOD_RADIUS = 1.0

# Guards the inverse of a layer distance when estimating layer weights
MIN_LAYER_DISTANCE = 1e-12

NO_ELIGIBLE_UNIT_MSG = "No unit within the missing-value tolerance, using all units"
