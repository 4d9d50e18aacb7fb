from coaster.tests.mocks.connection import MockConnection, YieldingConnection

__all__ = ["MockConnection", "YieldingConnection"]
