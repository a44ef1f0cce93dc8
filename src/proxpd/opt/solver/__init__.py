from .pdhg import (
    PDHG as PDHG,
    Result as Result,
)
