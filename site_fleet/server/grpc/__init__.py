"""Minimal gRPC service exposing simulation state and commands."""

from __future__ import annotations

from .server import create_grpc_server, start_grpc_server

__all__ = ["create_grpc_server", "start_grpc_server"]
