[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "isokalman"
version = "0.1.0"
description = "Isolated Kalman filtering building blocks: beliefs, time-horizon histories, cross-covariance factors, delayed measurements and NIS outlier rejection"
requires-python = ">=3.10"
keywords = [
    "kalman filter",
    "state estimation",
    "sensor fusion",
    "isolated kalman filter",
    "covariance intersection",
]
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
    "Topic :: Scientific/Engineering :: Mathematics",
]
dependencies = [
    "numpy",
    "matplotlib",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["isokalman"]

[tool.pytest.ini_options]
addopts = "-ra"
