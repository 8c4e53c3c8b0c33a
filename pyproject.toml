[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rpcwire"
version = "0.1.0"
description = "Wire-level helpers for the Connect, gRPC and gRPC-Web RPC protocols"
requires-python = ">=3.10"
dependencies = []
keywords = ["rpc", "grpc", "grpc-web", "connect", "http", "protocol"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest", "hypothesis"]

[tool.hatch.build.targets.wheel]
packages = ["rpcwire"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
