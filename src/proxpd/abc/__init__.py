from .linop import (
    Block as Block,
)
from .prox import (
    ProxOp as ProxOp,
)
from .solver import (
    Solver as Solver,
    SolverMode as SolverMode,
    SolverStatus as SolverStatus,
    StoppingCriterion as StoppingCriterion,
)
