"""sbmfit: hierarchical stochastic block model fitting by agglomerative collapse."""

from sbmfit.domain.models import (
    CollapseResult,
    CollapseStatus,
    PartitionSnapshot,
    TrajectoryRecord,
)
from sbmfit.domain.network import Network
from sbmfit.domain.partition import PartitionState
from sbmfit.errors import (
    ConfigurationError,
    NetworkValidationError,
    SBMError,
    StructuralError,
)
from sbmfit.services.collapse import CollapseConfig, CollapseEngine
from sbmfit.services.entropy import EntropyModel
from sbmfit.services.heuristics import Heuristic, choose_best, select_best_state
from sbmfit.services.mcmc import MCMCSampler
from sbmfit.services.scan import collapse_run

__version__ = "0.1.0"

__all__ = [
    "CollapseConfig",
    "CollapseEngine",
    "CollapseResult",
    "CollapseStatus",
    "ConfigurationError",
    "EntropyModel",
    "Heuristic",
    "MCMCSampler",
    "Network",
    "NetworkValidationError",
    "PartitionSnapshot",
    "PartitionState",
    "SBMError",
    "StructuralError",
    "TrajectoryRecord",
    "choose_best",
    "collapse_run",
    "select_best_state",
]
