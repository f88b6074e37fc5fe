"""The computation graph and the engine that evaluates it."""

from __future__ import annotations

from collections.abc import Callable, Sequence

import numpy as np

from .dim import Dim
from .model import LookupParameters, Parameters
from .nodes import Node

_live_graphs = 0


class GraphInUseError(RuntimeError):
    """A second computation graph was created while another is alive."""


def _resolve(value):
    return value() if callable(value) else value


def _as_dim(dim) -> Dim:
    return dim if isinstance(dim, Dim) else Dim(dim)


class _Leaf(Node):
    """A node of no arguments with a fixed shape."""

    def __init__(self, dim: Dim):
        super().__init__(())
        self._shape = dim

    def dim_forward(self, xs):
        if xs:
            raise ValueError(f"{type(self).__name__} takes no arguments")
        return self._shape

    def _grad(self, xs, fx, dEdf, i):
        raise IndexError("a leaf node has no arguments")


class ScalarInputNode(_Leaf):
    """A scalar read from a number, or from a callable at evaluation time."""

    def __init__(self, value: float | Callable[[], float]):
        super().__init__(Dim(1))
        self.value = value

    def as_string(self, arg_names):
        return f"scalar_input={_resolve(self.value)}"

    def _compute(self, xs):
        return np.float32(_resolve(self.value))


class InputNode(_Leaf):
    """A tensor whose column-major data is read from the caller's sequence."""

    def __init__(self, dim, data: Sequence[float] | Callable[[], Sequence[float]]):
        super().__init__(_as_dim(dim))
        self.data = data

    def as_string(self, arg_names):
        return f"constant({self._shape})"

    def _compute(self, xs):
        arr = np.asarray(_resolve(self.data), dtype=np.float32).ravel(order="F")
        if arr.size != self._shape.size():
            raise ValueError(
                f"input of shape {self._shape} needs {self._shape.size()} "
                f"values, got {arr.size}"
            )
        return arr


class ParameterNode(_Leaf):
    """The current value of a set of parameters."""

    def __init__(self, p: Parameters):
        super().__init__(p.dim)
        self.params = p

    def as_string(self, arg_names):
        return f"parameters({self._shape})"

    def _compute(self, xs):
        return self.params.values.copy()

    def accumulate_grad(self, grad: np.ndarray) -> None:
        self.params.accumulate_grad(grad)


class LookupNode(_Leaf):
    """One row of a lookup table; the index may be an int or a callable."""

    def __init__(self, p: LookupParameters, index: int | Callable[[], int]):
        super().__init__(p.dim)
        self.params = p
        self.index = index

    def current_index(self) -> int:
        idx = int(_resolve(self.index))
        if not 0 <= idx < len(self.params.values):
            raise IndexError(f"lookup index {idx} out of range")
        return idx

    def as_string(self, arg_names):
        return f"lookup_parameters(|x|={len(self.params.values)} --> {self._shape})"

    def _compute(self, xs):
        return self.params.values[self.current_index()].copy()

    def accumulate_grad(self, grad: np.ndarray) -> None:
        self.params.accumulate_grad(self.current_index(), grad)


class SimpleExecutionEngine:
    """Evaluates a graph's nodes in order and back-propagates gradients."""

    def __init__(self, cg: ComputationGraph):
        self.cg = cg
        self._values: list[np.ndarray] = []
        self._grads: list[np.ndarray] = []
        self._last_evaluated = 0

    def invalidate(self) -> None:
        """Forget all cached values."""
        self._last_evaluated = 0
        self._values = []

    def forward(self, upto: int | None = None) -> np.ndarray:
        """Evaluate nodes below ``upto`` from scratch; returns the last value."""
        self.invalidate()
        return self.incremental_forward(upto)

    def incremental_forward(self, upto: int | None = None) -> np.ndarray:
        """Evaluate the nodes not yet evaluated, below ``upto``."""
        if upto is None:
            upto = len(self.cg.nodes)
        if not 0 < upto <= len(self.cg.nodes):
            raise IndexError(f"cannot evaluate up to node {upto}")
        if upto <= self._last_evaluated:
            return self._values[upto - 1]
        while self._last_evaluated < upto:
            node = self.cg.nodes[self._last_evaluated]
            xs = [self._values[a] for a in node.args]
            self._values.append(node.forward(xs))
            self._last_evaluated += 1
        return self._values[-1]

    def get_value(self, i: int) -> np.ndarray:
        """The value of node ``i``, evaluating as far as needed."""
        if not 0 <= i < len(self.cg.nodes):
            raise IndexError(f"node {i} out of range")
        if i >= self._last_evaluated:
            self.incremental_forward(i + 1)
        return self._values[i]

    @property
    def gradients(self) -> list[np.ndarray]:
        """Derivatives of the objective for every node, after :meth:`backward`."""
        return list(self._grads)

    def backward(self) -> None:
        """Back-propagate from the last node, which must be a scalar."""
        num_nodes = len(self.cg.nodes)
        if self._last_evaluated == 0 or self._last_evaluated < num_nodes:
            raise RuntimeError("backward() needs a forward pass over every node")
        if self._values[-1].size != 1:
            raise ValueError("backward() called on non-scalar node.")

        grads = [np.zeros_like(v) for v in self._values]
        grads[-1] = np.ones_like(self._values[-1])

        needs_derivative = [False] * num_nodes
        for i in self.cg.parameter_nodes:
            needs_derivative[i] = True
        for ni, node in enumerate(self.cg.nodes):
            needs_derivative[ni] = needs_derivative[ni] or any(
                needs_derivative[a] for a in node.args
            )

        for i in reversed(range(num_nodes)):
            node = self.cg.nodes[i]
            xs = [self._values[a] for a in node.args]
            for ai, arg in enumerate(node.args):
                if needs_derivative[arg]:
                    grads[arg] += node.backward(xs, self._values[i], grads[i], ai)

        self._grads = grads
        for i in self.cg.parameter_nodes:
            self.cg.nodes[i].accumulate_grad(grads[i])


class ComputationGraph:
    """A growing list of nodes in topological order.

    Only one graph may be alive at a time; use it as a context manager or
    call :meth:`close` to release it.
    """

    def __init__(self):
        global _live_graphs
        if _live_graphs >= 1:
            raise GraphInUseError("Attempted to create >1 CG")
        _live_graphs += 1
        self._closed = False
        self.nodes: list[Node] = []
        self.parameter_nodes: list[int] = []
        self.ee = SimpleExecutionEngine(self)

    def __enter__(self) -> ComputationGraph:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __del__(self):
        if not getattr(self, "_closed", True):
            self.close()

    def close(self) -> None:
        """Clear the graph and allow another to be created."""
        global _live_graphs
        if self._closed:
            return
        self.clear()
        self._closed = True
        _live_graphs -= 1

    def _push(self, node: Node, is_parameter: bool = False) -> int:
        node.dim = node.dim_forward([self.nodes[a].dim for a in node.args])
        index = len(self.nodes)
        self.nodes.append(node)
        if is_parameter:
            self.parameter_nodes.append(index)
        return index

    def add_input(self, value, dim=None) -> int:
        """A scalar input, or with ``dim`` a tensor read from a sequence."""
        if dim is None:
            return self._push(ScalarInputNode(value))
        return self._push(InputNode(dim, value))

    def add_parameters(self, p: Parameters) -> int:
        return self._push(ParameterNode(p), is_parameter=True)

    def add_lookup(self, p: LookupParameters, index) -> int:
        return self._push(LookupNode(p, index), is_parameter=True)

    def add_const_lookup(self, p: LookupParameters, index) -> int:
        """Like :meth:`add_lookup`, but the table receives no gradient."""
        return self._push(LookupNode(p, index))

    def add_function(self, node: Node) -> int:
        for a in node.args:
            if not 0 <= a < len(self.nodes):
                raise IndexError(f"argument {a} does not name an existing node")
        return self._push(node)

    def clear(self) -> None:
        """Reset to a newly created state."""
        self.nodes.clear()
        self.parameter_nodes.clear()
        self.ee.invalidate()

    def forward(self) -> np.ndarray:
        return self.ee.forward()

    def incremental_forward(self) -> np.ndarray:
        return self.ee.incremental_forward()

    def get_value(self, i: int) -> np.ndarray:
        return self.ee.get_value(i)

    def invalidate(self) -> None:
        self.ee.invalidate()

    def backward(self) -> None:
        self.ee.backward()

    def graphviz(self) -> str:
        """The graph in Graphviz dot syntax."""
        lines = ["digraph G {", "  rankdir=LR;", "  nodesep=.05;"]
        for nc, node in enumerate(self.nodes):
            names = [f"v{a}" for a in node.args]
            lines.append(f'  N{nc} [label="v{nc} = {node.as_string(names)}"];')
            lines.extend(f"  N{a} -> N{nc};" for a in node.args)
        lines.append("}")
        return "\n".join(lines) + "\n"