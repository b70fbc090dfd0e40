[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slamgeom"
version = "0.1.0"
description = "Geometric building blocks for feature-based visual SLAM: ORB descriptor matching and EPnP camera pose estimation."
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["slam", "computer-vision", "epnp", "pnp", "orb", "feature-matching", "pose-estimation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
    "hypothesis",
]

[tool.hatch.build.targets.wheel]
packages = ["slamgeom"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
