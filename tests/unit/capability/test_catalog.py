"""
Unit tests for capability definitions and the built-in catalog.
"""

from pathlib import Path

import pytest

from capbridge.bridge.generator import BridgeGenerator
from capbridge.bridge.spec import BridgeSpec
from capbridge.capability import (
    CATALOG,
    CapabilityDefinition,
    CapabilityNotAvailable,
    CapabilityNotSupported,
    CapabilityOperation,
    OperationCancelledByCaller,
    PlatformError,
    get_definition,
)
from capbridge.capability.catalog import BIOMETRIC, CLIPBOARD
from capbridge.capability.definition import snake_case
from capbridge.config.target import TargetPlatform


class TestCatalog:
    """Test suite for the built-in capability catalog."""

    def test_known_capabilities(self):
        assert {
            "biometric",
            "camera",
            "clipboard",
            "codec",
            "dialog",
            "fs",
            "haptic",
            "location",
            "notification",
            "system",
        } == set(CATALOG)

    def test_get_definition(self):
        assert get_definition("clipboard") is CLIPBOARD

    def test_unknown_definition(self):
        with pytest.raises(KeyError) as exc_info:
            get_definition("teleport")

        assert "teleport" in str(exc_info.value)
        assert "clipboard" in str(exc_info.value)

    @pytest.mark.parametrize("name", sorted(CATALOG))
    @pytest.mark.parametrize("platform", list(TargetPlatform))
    def test_every_definition_is_bridgeable(self, name, platform):
        definition = CATALOG[name]
        spec = BridgeSpec(
            name=name,
            module_path=name,
            lib_name=f"{name.title()}Helper",
            root=Path("."),
            native_sources=(Path(f"native/{name}.src"),),
            operations=definition.signatures,
            required_operations=definition.signatures,
        )

        BridgeGenerator().validate(spec, platform)

    def test_availability_operations_fall_back(self):
        for definition in CATALOG.values():
            for op in definition.operations:
                if op.name in ("isAvailable", "isSupported"):
                    assert op.fallback is False, f"{definition.name}.{op.name}"

    def test_biometric_reports_not_available(self):
        assert BIOMETRIC.unavailable_error is CapabilityNotAvailable
        assert CLIPBOARD.unavailable_error is CapabilityNotSupported


class TestCapabilityDefinition:
    def test_operation_lookup(self):
        op = CLIPBOARD.operation("setText")

        assert op.name == "setText"
        assert op.method_name == "set_text"
        assert not op.has_fallback

    def test_unknown_operation(self):
        with pytest.raises(CapabilityNotSupported) as exc_info:
            CLIPBOARD.operation("paste")

        assert exc_info.value.capability == "clipboard"
        assert exc_info.value.operation == "paste"

    def test_duplicate_operations_rejected(self):
        with pytest.raises(ValueError):
            CapabilityDefinition(
                name="dup",
                version=1,
                operations=(CapabilityOperation("close()"), CapabilityOperation("close() -> bool")),
            )

    def test_signature_is_parsed(self):
        op = CapabilityOperation("async confirm(title: borrowed string) -> bool")

        assert op.signature.is_async
        assert op.signature.returns.base.value == "bool"

    def test_fallback_none_is_a_fallback(self):
        assert CapabilityOperation("reentrant batteryLevel() -> f32?", fallback=None).has_fallback

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("getText", "get_text"),
            ("isAvailable", "is_available"),
            ("getBiometricType", "get_biometric_type"),
            ("close", "close"),
        ],
    )
    def test_snake_case(self, name, expected):
        assert snake_case(name) == expected


class TestErrors:
    def test_default_messages(self):
        assert str(CapabilityNotSupported()) == "The capability is not supported on this platform"
        assert str(OperationCancelledByCaller()) == "The caller stopped waiting for the operation"

    def test_default_message_without_docstring(self):
        class SensorOffline(CapabilityNotAvailable):
            pass

        error = SensorOffline(capability="camera")

        assert str(error) == "SensorOffline"
        assert error.capability == "camera"

    def test_platform_error(self):
        error = PlatformError("device busy", capability="camera", operation="open")

        assert str(error) == "Platform error: device busy"
        assert error.detail == "device busy"
        assert error.capability == "camera"
