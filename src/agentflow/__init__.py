"""agentflow: workflow orchestration for autonomous issue-to-PR development.

Workflow documents (markdown with fenced ``python`` blocks) register
handlers for issue-store events; the daemon compiles them, watches for
changes, and dispatches events to the handlers through a runtime whose
namespaces (``claude``, ``git``, ``issues``, ``pr``, ``dag``, ...) forward
to a local, remote, or durable transport.
"""

__version__ = "0.1.0"
