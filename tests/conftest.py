import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from identity_provisioner.config.settings import MappingConfigSource
from identity_provisioner.integrations.directory import MockDirectoryService
from identity_provisioner.integrations.notifications import MockNotificationSink
from identity_provisioner.utils.telemetry import provisioning_metrics


@pytest.fixture(autouse=True)
def _reset_metrics():
    provisioning_metrics.reset()
    yield
    provisioning_metrics.reset()


@pytest.fixture
def config_source():
    return MappingConfigSource({
        "tenant_id": "00000000-0000-0000-0000-000000000001",
        "notification_email": "servicedesk@example.com",
    })


@pytest.fixture
def directory():
    return MockDirectoryService()


@pytest.fixture
def notifier():
    return MockNotificationSink()
