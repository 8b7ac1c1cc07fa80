"""Shared fixtures: an in-memory stand-in for resourcemanager_v3.ProjectsClient."""

from __future__ import annotations

import logging
from typing import List, Optional

import pytest
from google.iam.v1 import policy_pb2
from google.type import expr_pb2

from gcp_iam import GCPProvider


class FakeProjectsClient:
    """Stores one policy per resource and can fail chosen calls."""

    def __init__(self, policy: Optional[policy_pb2.Policy] = None):
        self.policy = policy if policy is not None else policy_pb2.Policy(version=1, etag=b"BwXfake")
        self.get_requests: List = []
        self.set_requests: List = []
        self.get_kwargs: List[dict] = []
        self.set_kwargs: List[dict] = []
        # entries are exceptions to raise or None for a normal call, consumed in order
        self.get_failures: List[Optional[Exception]] = []
        self.set_failures: List[Optional[Exception]] = []

    def get_iam_policy(self, request=None, **kwargs):
        self.get_requests.append(request)
        self.get_kwargs.append(kwargs)
        if self.get_failures:
            exc = self.get_failures.pop(0)
            if exc is not None:
                raise exc
        copy = policy_pb2.Policy()
        copy.CopyFrom(self.policy)
        return copy

    def set_iam_policy(self, request=None, **kwargs):
        self.set_requests.append(request)
        self.set_kwargs.append(kwargs)
        if self.set_failures:
            exc = self.set_failures.pop(0)
            if exc is not None:
                raise exc
        stored = policy_pb2.Policy()
        stored.CopyFrom(request.policy)
        self.policy = stored
        return stored


def temp_binding(role: str, members: List[str], title: str,
                 expires: str = "2030-01-01T00:00:00Z") -> policy_pb2.Binding:
    return policy_pb2.Binding(
        role=role,
        members=members,
        condition=expr_pb2.Expr(
            title=title,
            description="Temporary access granted by GTA tool",
            expression=f"request.time < timestamp('{expires}')",
        ),
    )


@pytest.fixture
def fake_client():
    return FakeProjectsClient()


@pytest.fixture
def provider(fake_client):
    return GCPProvider(client=fake_client)


@pytest.fixture
def dry_provider(fake_client):
    return GCPProvider(client=fake_client, dry_run=True)


@pytest.fixture(autouse=True)
def _reset_gta_logger():
    """setup_logging() detaches the 'gta' logger from root; undo it so caplog keeps working."""
    yield
    app_logger = logging.getLogger("gta")
    app_logger.handlers.clear()
    app_logger.setLevel(logging.NOTSET)
    app_logger.propagate = True
