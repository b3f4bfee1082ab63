"""
Unit tests for backend registration and the binding table.
"""

import pytest

from capbridge.capability import (
    CATALOG,
    UNSUPPORTED,
    Backend,
    BackendRegistry,
    BindingError,
    CapabilityNotSupported,
    UnsupportedBackend,
)
from capbridge.capability.catalog import CLIPBOARD, HAPTIC
from capbridge.config.target import TargetPlatform


class MemoryClipboard(Backend):
    """Complete clipboard backend keeping values in memory."""

    name = "memory-clipboard"

    def __init__(self):
        self.text = None
        self.image = None

    def get_text(self):
        return self.text

    def set_text(self, text):
        self.text = text

    def get_image(self):
        return self.image

    def set_image(self, image):
        self.image = image


class TextOnlyClipboard(Backend):
    name = "text-only"

    def get_text(self):
        return ""

    def set_text(self, text):
        pass


class OfflineClipboard(MemoryClipboard):
    name = "offline"

    def is_available(self, platform):
        return False


class TestBackendRegistry:
    """Test suite for BackendRegistry.bind()."""

    @pytest.mark.parametrize("name", sorted(CATALOG))
    def test_exactly_one_binding_per_pair(self, name):
        definition = CATALOG[name]

        table = BackendRegistry(definition).bind()

        expected = {(op, platform) for op in definition.operation_names for platform in TargetPlatform}
        assert set(table) == expected
        assert len(table) == len(definition.operations) * len(TargetPlatform)
        assert all(binding.is_unsupported for binding in table.values())

    def test_registered_backend_is_bound(self):
        backend = MemoryClipboard()

        table = BackendRegistry(CLIPBOARD).register(TargetPlatform.APPLE_DESKTOP, backend).bind()

        for op in CLIPBOARD.operation_names:
            assert table.resolve(op, TargetPlatform.APPLE_DESKTOP).backend is backend
            assert table.resolve(op, TargetPlatform.LINUX).backend is UNSUPPORTED
            assert table.resolve(op, TargetPlatform.UNKNOWN).is_unsupported

    def test_one_backend_on_several_platforms(self):
        backend = MemoryClipboard()

        table = (
            BackendRegistry(CLIPBOARD)
            .register(TargetPlatform.WINDOWS, backend)
            .register(TargetPlatform.LINUX, backend)
            .bind()
        )

        assert table.backend_for("getText", TargetPlatform.WINDOWS) is backend
        assert table.backend_for("getText", TargetPlatform.LINUX) is backend

    def test_two_backends_for_one_pair(self):
        registry = BackendRegistry(CLIPBOARD)
        registry.register(TargetPlatform.LINUX, MemoryClipboard())
        registry.register(TargetPlatform.LINUX, MemoryClipboard())

        with pytest.raises(BindingError) as exc_info:
            registry.bind()

        assert "clipboard.getText" in str(exc_info.value)

    def test_same_backend_registered_twice(self):
        backend = MemoryClipboard()
        registry = BackendRegistry(CLIPBOARD).register(TargetPlatform.LINUX, backend)

        with pytest.raises(BindingError):
            registry.register(TargetPlatform.LINUX, backend)

    def test_unknown_platform_cannot_be_registered(self):
        with pytest.raises(BindingError):
            BackendRegistry(CLIPBOARD).register(TargetPlatform.UNKNOWN, MemoryClipboard())

    def test_partial_backend_rejected(self):
        registry = BackendRegistry(CLIPBOARD).register(TargetPlatform.ANDROID, TextOnlyClipboard())

        with pytest.raises(BindingError) as exc_info:
            registry.bind()

        assert "getImage, setImage" in str(exc_info.value)

    def test_unavailable_backend_falls_back(self):
        registry = BackendRegistry(CLIPBOARD).register(TargetPlatform.APPLE_MOBILE, OfflineClipboard())

        table = registry.bind()

        assert table.resolve("getText", TargetPlatform.APPLE_MOBILE).is_unsupported

    def test_unavailable_backend_does_not_conflict(self):
        registry = (
            BackendRegistry(CLIPBOARD)
            .register(TargetPlatform.APPLE_MOBILE, OfflineClipboard())
            .register(TargetPlatform.APPLE_MOBILE, MemoryClipboard())
        )

        table = registry.bind()

        assert isinstance(table.backend_for("setText", TargetPlatform.APPLE_MOBILE), MemoryClipboard)


class TestBindingTable:
    def test_read_only(self):
        table = BackendRegistry(HAPTIC).bind()

        with pytest.raises(TypeError):
            table[("feedback", TargetPlatform.LINUX)] = None

    def test_resolve_unknown_operation(self):
        table = BackendRegistry(HAPTIC).bind()

        with pytest.raises(CapabilityNotSupported):
            table.resolve("vibrate", TargetPlatform.ANDROID)

    def test_unsupported_backend_shared(self):
        table = BackendRegistry(HAPTIC).bind()

        first = table.backend_for("feedback", TargetPlatform.LINUX)
        second = table.backend_for("isSupported", TargetPlatform.WINDOWS)

        assert isinstance(first, UnsupportedBackend)
        assert first is second

    def test_for_platform(self):
        backend = MemoryClipboard()
        table = BackendRegistry(CLIPBOARD).register(TargetPlatform.ANDROID, backend).bind()

        bindings = table.for_platform(TargetPlatform.ANDROID)

        assert list(bindings) == list(CLIPBOARD.operation_names)
        assert all(b.backend is backend for b in bindings.values())


class TestBackend:
    def test_handler_by_method_name(self):
        backend = MemoryClipboard()

        assert backend.handler(CLIPBOARD.operation("getText")) == backend.get_text

    def test_missing_operations(self):
        assert TextOnlyClipboard().missing_operations(CLIPBOARD) == ["getImage", "setImage"]

    def test_repr(self):
        assert repr(MemoryClipboard()) == "<MemoryClipboard memory-clipboard>"

    def test_unsupported_is_reentrant(self):
        backend = UnsupportedBackend(CLIPBOARD)

        assert all(backend.is_reentrant(op) for op in CLIPBOARD.operations)
