# dyngraph

A small library for building neural networks as dynamic computation graphs.
Each training example builds its own graph of nodes; values are computed on
demand with numpy and gradients flow back into the model's parameters.

## Installation

```
pip install .
```

The only runtime dependency is numpy.

## Modules

- `dyngraph.dim` — `Dim`, the shape of a tensor with up to seven extents.
  Extents past the last stored one read as 1, so `Dim(4).cols()` is 1.
  `format_dims` renders a list of shapes as `[{a,b} {c}]`.
- `dyngraph.model` — `Model` owns the trainable weights: dense `Parameters`
  from `add_parameters(dim, scale=0.0)` (uniform in `(-scale, scale)`, or
  Glorot-scaled when `scale` is 0) and embedding tables (`LookupParameters`)
  from `add_lookup_parameters(n, dim)`. `gradient_l2_norm()` and
  `reset_gradient()` work over all of them. `project_weights()` only prints
  the L2 norm of all weights to stderr and returns it; it does not rescale.
- `dyngraph.nodes` — the differentiable operations: `Tanh`, `LogisticSigmoid`,
  `Rectify`, `Softmax`, `LogSoftmax`, `PickNegLogSoftmax`, `MatrixMultiply`,
  `AffineTransform`, `Concatenate`, `ConcatenateColumns`, `Sum`, `Average`,
  `CwiseMultiply`, `SquaredEuclideanDistance`, `Hinge`, `Dropout` and more.
  Each node is built from the indices of its argument nodes plus any
  constants (for example `PickNegLogSoftmax((h,), val=0)`).
- `dyngraph.conv` — `Conv1DNarrow`, `Conv1DWide`, `KMaxPooling`, `FoldRows`
  and `AddVectorToAllColumns`, row-wise operations on matrices.
- `dyngraph.graph` — `ComputationGraph` holds the nodes for one example in
  topological order, and `SimpleExecutionEngine` evaluates them. Only one
  graph may be open at a time (a second raises `GraphInUseError`), so use it
  as a context manager or call `close()`.
- `dyngraph.rng` — `initialize(seed)` seeds the shared Mersenne Twister used
  for initialisation, noise and dropout; a seed of 0 draws one from the OS.
- `dyngraph.vocab` — `Dict` maps words to consecutive ids. After `freeze()`
  unknown words raise `UnknownWordError` unless `set_unk(word)` was called.
  `read_sentence` and `read_sentence_pair` (split on `|||`) turn lines of text
  into id lists.
- `dyngraph.mempool` — `AlignedMemoryPool`, a bump allocator over one aligned
  byte buffer that raises `OutOfMemoryError` when full.

## Example

```python
from dyngraph import rng
from dyngraph.dim import Dim
from dyngraph.model import Model
from dyngraph.graph import ComputationGraph
from dyngraph.nodes import AffineTransform, PickNegLogSoftmax, Tanh

rng.initialize(1)
model = Model()
W = model.add_parameters(Dim(3, 2))
b = model.add_parameters(Dim(3))

with ComputationGraph() as cg:
    x = cg.add_input([1.0, -1.0], Dim(2))
    w_i = cg.add_parameters(W)
    b_i = cg.add_parameters(b)
    h = cg.add_function(AffineTransform((b_i, w_i, x)))
    h = cg.add_function(Tanh((h,)))
    loss = cg.add_function(PickNegLogSoftmax((h,), val=0))
    print(cg.forward())
    cg.backward()

print(model.gradient_l2_norm())
model.reset_gradient()
```

`add_input` takes a number for a scalar, or a sequence and a `Dim` for a
tensor (data read column-major). Either may instead be a callable, which is
called each time the graph is evaluated. `add_lookup(table, index)` and
`add_const_lookup` do the same for embedding rows; only the former sends
gradients to the table.

`forward()` evaluates every node afresh, `incremental_forward()` only those
added since the last evaluation, and `get_value(i)` the value of node `i`.
`backward()` requires the last node to be a scalar; afterwards
`cg.ee.gradients` holds the derivative for every node. `graphviz()` returns
the graph in dot syntax.

Nodes can also be used on their own with numpy arrays:

```python
import numpy as np
from dyngraph.nodes import MatrixMultiply

mm = MatrixMultiply((0, 1))
u = np.array([[1, 3, 5], [2, 4, 6]], dtype=np.float32)
v = np.array([[7, 10], [8, 11], [9, 12]], dtype=np.float32)
w = mm.forward([u, v])                       # [[76, 103], [100, 136]]
du = mm.backward([u, v], w, np.ones_like(w), 0)
```

## What is not included

The package has no higher-level layer over the graph: there are no
expression objects with arithmetic operators, no ready-made recurrent
builders (LSTM, GRU or character-to-word networks) and no finite-difference
gradient checker. Networks are built by adding nodes to a
`ComputationGraph` by index as shown above. Models cannot be saved to or
loaded from disk, and there is no command-line program.

## Running the tests

```
pip install .[test]
pytest
```