[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kubeplacement"
version = "0.1.0"
description = "Cluster scheduling plugins: NUMA topology matching, QoS queue sorting, pod-state and load-aware node scoring"
requires-python = ">=3.10"
dependencies = []
keywords = ["scheduling", "kubernetes", "numa", "bin-packing", "load-balancing", "cluster"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kubeplacement"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
