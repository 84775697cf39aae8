"""Cloud API mock for integration testing.

This package provides an in-memory implementation of the control-plane and
data-plane APIs so controllers can be exercised without network access.

Key Features:
- In-memory state for clusters, networks, topics, users and ACLs
- Long-running operations with scripted state sequences
- Call recording for asserting remote-call counts
- Error injection and unreachable endpoints for failure scenarios
- Delayed ACL visibility for propagation scenarios

Usage:
    from cloud_mock import MockCloud

    cloud = MockCloud()
    controller = Controller(TopicKind(), cloud.clients(), config)
    result = await controller.create(spec)

    assert cloud.call_count("CreateTopic") == 1
"""

from .cloud import CONTROL_PLANE_URL, MockCloud
from .transport import MockTransport, RecordedCall

__all__ = [
    "CONTROL_PLANE_URL",
    "MockCloud",
    "MockTransport",
    "RecordedCall",
]
