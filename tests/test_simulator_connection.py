"""
Unit tests for the simulator connection monitor.
"""

import time

import pytest
from unittest.mock import Mock

from trainbridge.events import SimulatorStatusChanged
from trainbridge.simulator.client import SimulatorClient, SimulatorError
from trainbridge.simulator.connection import SimulatorConnection


@pytest.fixture
def client():
    client = Mock(spec=SimulatorClient)
    client.base_url = "http://localhost:31270"
    return client


class TestCheck:
    """Tests for single health checks."""

    def test_first_success_notifies(self, client):
        monitor = SimulatorConnection(client)
        events = []
        monitor.add_listener(events.append)

        assert monitor.check() is True
        assert monitor.check() is True

        assert events == [SimulatorStatusChanged(connected=True)]
        assert monitor.connected

    def test_loss_notifies(self, client):
        monitor = SimulatorConnection(client)
        events = []
        monitor.add_listener(events.append)
        monitor.check()

        client.info.side_effect = SimulatorError("connection refused")
        assert monitor.check() is False

        assert events[-1] == SimulatorStatusChanged(connected=False)
        assert monitor.stats["failures"] == 1

    def test_never_connected(self, client):
        """Failing while already disconnected publishes nothing."""
        client.info.side_effect = SimulatorError("connection refused")
        monitor = SimulatorConnection(client)
        events = []
        monitor.add_listener(events.append)

        monitor.check()

        assert events == []
        assert monitor.stats["checks"] == 1

    def test_listener_error_isolated(self, client):
        monitor = SimulatorConnection(client)
        events = []
        monitor.add_listener(Mock(side_effect=RuntimeError("boom")))
        monitor.add_listener(events.append)

        monitor.check()

        assert len(events) == 1

    def test_thread_runs_checks(self, client):
        monitor = SimulatorConnection(client, check_interval_s=0.01)

        monitor.start()
        deadline = time.monotonic() + 2.0
        while not client.info.called and time.monotonic() < deadline:
            time.sleep(0.01)
        monitor.stop()

        assert client.info.called
