"""IoT broker package for the Lumina controller.

- session.py: BrokerSession, the single supervised broker connection
- retry_policy.py: reconnect delays
- publisher.py: outbound property reports
- command_routing.py: inbound set-property commands
"""

from .command_routing import InboundCommandHandler, parse_request_id
from .publisher import CommandPublisher, build_report
from .retry_policy import RetryPolicy
from .session import BrokerSession, build_client

__all__ = [
    "BrokerSession",
    "CommandPublisher",
    "InboundCommandHandler",
    "RetryPolicy",
    "build_client",
    "build_report",
    "parse_request_id",
]
