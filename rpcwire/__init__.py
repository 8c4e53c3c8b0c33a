"""Wire-level helpers for the Connect, gRPC and gRPC-Web RPC protocols."""

__version__ = "0.1.0"

__all__ = [
    "connect_protocol",
    "connect_wire",
    "core",
    "grpc_protocol",
    "grpc_timeout",
    "recover",
]