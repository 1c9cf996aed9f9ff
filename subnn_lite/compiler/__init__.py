"""
Plan compilation.

Provides:
- PlanCompiler / compile_plan: Plan to RunningModel
- RunningModel, CompiledLayer: Executable model representation
"""

from subnn_lite.compiler.compiler import KERNEL_BINDERS, PlanCompiler, compile_plan
from subnn_lite.compiler.running_model import CompiledLayer, RunningModel

__all__ = [
    "KERNEL_BINDERS",
    "PlanCompiler",
    "compile_plan",
    "CompiledLayer",
    "RunningModel",
]
