"""
camstream_worker - Out-of-process inference

This package owns the inference worker: the message protocol, the
main-side channel (lifecycle + admission control) and the worker process
that loads the model and runs it.

Architecture:
- InferenceWorkerChannel: state machine, at most one request in flight
- WorkerMessage / WorkerConfig / InferenceResult: protocol types
- ProcessWorkerHandle + run_worker: multiprocessing transport
- ModelLoader: YOLO / YOLO-World inside the worker (camstream_worker.model_loader,
  imported only in the worker process)

Threading Model:
- Worker process (model load + inference)
- Listener thread (receives worker messages, invokes callbacks)
"""

from camstream_worker.channel import InferenceWorkerChannel, WorkerState, can_transition
from camstream_worker.errors import InvalidTransition, ModelLoadError, ProtocolViolation
from camstream_worker.process import ProcessWorkerHandle, WorkerHandle, WorkerRuntime, run_worker
from camstream_worker.protocol import InferenceResult, MessageType, WorkerConfig, WorkerMessage

__all__ = [
    "InferenceWorkerChannel",
    "WorkerState",
    "can_transition",
    "InvalidTransition",
    "ModelLoadError",
    "ProtocolViolation",
    "ProcessWorkerHandle",
    "WorkerHandle",
    "WorkerRuntime",
    "run_worker",
    "InferenceResult",
    "MessageType",
    "WorkerConfig",
    "WorkerMessage",
]
