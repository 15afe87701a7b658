"""Async gRPC server that mirrors the state query and command submission of the REST API."""

from __future__ import annotations

import grpc
from google.protobuf import empty_pb2, json_format, struct_pb2

from site_fleet.services import AdmissionError, SimulationEngine

SERVICE_NAME = "sitefleet.Simulation"

GRPC_STATUS = {
    AdmissionError.NOT_FOUND: grpc.StatusCode.NOT_FOUND,
    AdmissionError.CONFLICT: grpc.StatusCode.FAILED_PRECONDITION,
    AdmissionError.INVALID: grpc.StatusCode.INVALID_ARGUMENT,
    AdmissionError.QUEUE_FULL: grpc.StatusCode.RESOURCE_EXHAUSTED,
}


def _to_struct(data: dict) -> struct_pb2.Struct:
    struct = struct_pb2.Struct()
    struct.update(data)
    return struct


class SimulationGrpcService:
    def __init__(self, engine: SimulationEngine) -> None:
        self.engine = engine

    async def GetState(self, request: empty_pb2.Empty, context: grpc.aio.ServicerContext) -> struct_pb2.Struct:  # noqa: N802
        return _to_struct(self.engine.snapshot().model_dump(mode="json"))

    async def SubmitCommand(self, request: struct_pb2.Struct, context: grpc.aio.ServicerContext) -> struct_pb2.Struct:  # noqa: N802
        payload = json_format.MessageToDict(request)
        try:
            receipt = self.engine.submit(payload)
        except AdmissionError as exc:
            context.set_code(GRPC_STATUS.get(exc.code, grpc.StatusCode.UNKNOWN))
            context.set_details(exc.message)
            return struct_pb2.Struct()
        return _to_struct(receipt.model_dump(mode="json", exclude_none=True))


class _SimulationHandler(grpc.GenericRpcHandler):
    def __init__(self, servicer: SimulationGrpcService) -> None:
        self.servicer = servicer
        self._method_handlers = {
            "GetState": grpc.unary_unary_rpc_method_handler(
                servicer.GetState,
                request_deserializer=empty_pb2.Empty.FromString,
                response_serializer=struct_pb2.Struct.SerializeToString,
            ),
            "SubmitCommand": grpc.unary_unary_rpc_method_handler(
                servicer.SubmitCommand,
                request_deserializer=struct_pb2.Struct.FromString,
                response_serializer=struct_pb2.Struct.SerializeToString,
            ),
        }

    def service(self, handler_call_details: grpc.HandlerCallDetails):
        method = handler_call_details.method.rsplit("/", maxsplit=1)[-1]
        return self._method_handlers.get(method)


def create_grpc_server(engine: SimulationEngine, port: int = 50051) -> grpc.aio.Server:
    server = grpc.aio.server()
    handler = _SimulationHandler(SimulationGrpcService(engine))
    server.add_generic_rpc_handlers((handler,))
    server.add_insecure_port(f"[::]:{port}")
    return server


async def start_grpc_server(engine: SimulationEngine, port: int = 50051) -> grpc.aio.Server:
    server = create_grpc_server(engine, port)
    await server.start()
    return server
