from agentflow.transports.base import Transport
from agentflow.transports.durable import DurableTransport, StepHost
from agentflow.transports.local import LocalTransport
from agentflow.transports.remote import RemoteTransport

__all__ = ["DurableTransport", "LocalTransport", "RemoteTransport", "StepHost", "Transport"]
