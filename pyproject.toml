[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "uarchkit"
version = "0.1.0"
description = "Behavioural models of a TAGE branch predictor with a misprediction pattern cache and a hybrid L1D prefetcher"
requires-python = ">=3.10"
dependencies = []
keywords = ["branch prediction", "TAGE", "prefetcher", "cache", "microarchitecture", "simulation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["uarchkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
