"""Fields, kernels and the composer that runs them."""

from chromaflow.core.field import GridField
from chromaflow.core.kernel import Composer, Kernel, KernelParam

__all__ = ["GridField", "Composer", "Kernel", "KernelParam"]
