from __future__ import annotations

from factory_gdpr.core.errors import (
    ConfigError,
    DecryptionError,
    GovernanceError,
    KeyUnavailableError,
    Severity,
    UnsupportedFieldError,
    ValidationError,
)


def test_error_codes_and_recoverability():
    cases = [
        (ConfigError(), "config_error", False),
        (KeyUnavailableError(), "key_unavailable", False),
        (DecryptionError(), "decryption_failure", False),
        (UnsupportedFieldError(), "unsupported_field", True),
        (ValidationError(), "validation_error", False),
    ]
    for err, code, recoverable in cases:
        assert isinstance(err, GovernanceError)
        assert err.code == code
        assert err.recoverable is recoverable
        assert str(err).startswith(code + ": ")


def test_to_dict_redacts_secret_context():
    d = KeyUnavailableError("missing key", path="secure/data.key", data_key="abc").to_dict()
    assert d["severity"] == Severity.CRITICAL.value
    assert d["context"]["path"] == "secure/data.key"
    assert d["context"]["data_key"] == "***REDACTED***"
