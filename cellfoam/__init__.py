from cellfoam._types import DriveStrategy, FoamOptions, FoamState, PeekStrategy, RootMode
from cellfoam.density import FoamDensity, FunctionDensity, density_registry
from cellfoam.foam import Foam, create_foam
from cellfoam.geometries import FoamAxGeometry, FoamBoxGeometry, FoamGeometry
from cellfoam.utilities.exceptions import (
    FoamConfigurationError,
    FoamConsistencyError,
    FoamDensityError,
    FoamError,
    FoamGeometryError,
    FoamGrowthError,
    FoamIndexError,
)

__version__ = "0.1.0"
