from __future__ import annotations

import os
import random

import pytest

from factory_gdpr.core.config.models import GovernanceConfigFile
from factory_gdpr.core.config.paths import ConfigFsPaths
from factory_gdpr.core.crypto import CryptoBox, EphemeralKeyProvider
from factory_gdpr.core.engine import GovernanceEngine

from .helpers.fakes import CollectingAuditSink, FakeClock


@pytest.fixture
def tmp_config_root(tmp_path):
    """
    Provides an isolated repo root with config/ and secure/ under tmp_path.
    """
    fs = ConfigFsPaths(root=str(tmp_path))
    os.makedirs(fs.config_dir, exist_ok=True)
    os.makedirs(fs.secure_dir, exist_ok=True)
    return fs


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return CollectingAuditSink()


@pytest.fixture
def crypto():
    return CryptoBox(EphemeralKeyProvider())


@pytest.fixture
def engine(tmp_path, clock, sink):
    cfg = GovernanceConfigFile.model_validate({"keys": {"provider": "ephemeral"}, "scheduler": {"enabled": False}})
    eng = GovernanceEngine.from_config(cfg, root_path=str(tmp_path), audit_sinks=[sink], clock=clock, rng=random.Random(7))
    yield eng
    eng.stop()
