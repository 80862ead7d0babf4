[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sketchmap"
version = "0.1.0"
description = "Support code for sketch-based sequence mapping: an order-preserving thread pool, hash-table sizing policy, C-style number parsing and a DWARF line-table reader"
requires-python = ">=3.10"
dependencies = []
keywords = ["bioinformatics", "sequence mapping", "threadpool", "dwarf", "debug information"]
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
    "Topic :: Scientific/Engineering :: Bio-Informatics",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["sketchmap"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
