from .block import (
    DenseBlock as DenseBlock,
    DiagsBlock as DiagsBlock,
    Gradient2DBlock as Gradient2DBlock,
    IdentityBlock as IdentityBlock,
    SparseBlock as SparseBlock,
    ZeroBlock as ZeroBlock,
)
from .linop import (
    LinearOperator as LinearOperator,
)
