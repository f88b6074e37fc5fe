[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dyngraph"
version = "0.1.0"
description = "Dynamic computation graphs for neural networks with automatic differentiation"
requires-python = ">=3.10"
dependencies = ["numpy"]
keywords = ["neural networks", "autodiff", "computation graph", "backpropagation", "convolution"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["dyngraph"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
