from .decorator import (
    ProxMoreau as ProxMoreau,
    ProxPermute as ProxPermute,
    ProxTransform as ProxTransform,
)
from .elemop import (
    ProxElemwise as ProxElemwise,
    ProxNorm2 as ProxNorm2,
)
from .kernel import (
    Kernel as Kernel,
)
from .separable import (
    ProxSeparable as ProxSeparable,
)
