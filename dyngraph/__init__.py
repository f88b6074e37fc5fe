"""Dynamic computation graphs with automatic differentiation for neural networks."""

__version__ = "0.1.0"

__all__ = [
    "conv",
    "dim",
    "graph",
    "mempool",
    "model",
    "nodes",
    "rng",
    "vocab",
]