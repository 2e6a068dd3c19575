"""Test utilities for petal dispatchers.

    from petal.testing import TestClient
"""

from petal.testing.client import TestClient, TestResponse

__all__ = ["TestClient", "TestResponse"]
