"""
Unit tests for the async capability facade.
"""

import asyncio
import threading

import pytest

from capbridge.capability import (
    Backend,
    BackendRegistry,
    Capability,
    CapabilityNotAvailable,
    CapabilityNotSupported,
    OperationCancelledByCaller,
    OperationState,
    PlatformError,
)
from capbridge.capability.catalog import BIOMETRIC, CLIPBOARD, HAPTIC
from capbridge.config.target import TargetPlatform, TargetResolver


class ThreadRecordingClipboard(Backend):
    """Blocking clipboard backend that records which thread served each call."""

    name = "threaded"

    def __init__(self):
        self.text = None
        self.threads = []

    def get_text(self):
        self.threads.append(threading.get_ident())
        return self.text

    def set_text(self, text):
        self.threads.append(threading.get_ident())
        self.text = text

    def get_image(self):
        raise RuntimeError("pasteboard locked")

    def set_image(self, image):
        raise ValueError()


class SlowHaptic(Backend):
    """Coroutine backend that tracks how many calls overlap."""

    name = "slow-haptic"
    reentrant_operations = frozenset({"isSupported"})

    def __init__(self):
        self.active = 0
        self.max_active = {"isSupported": 0, "feedback": 0}
        self.release = None

    async def _track(self, op):
        self.active += 1
        self.max_active[op] = max(self.max_active[op], self.active)
        await asyncio.sleep(0.01)
        self.active -= 1

    async def is_supported(self):
        await self._track("isSupported")
        return True

    async def feedback(self, style):
        if self.release is not None:
            await self.release.wait()
        await self._track("feedback")
        if style < 0:
            raise CapabilityNotAvailable("no haptic engine")


def capability(definition, platform, backend=None, backend_platform=None):
    registry = BackendRegistry(definition)
    if backend is not None:
        registry.register(backend_platform or platform, backend)
    return Capability(registry.bind(), platform)


class TestUnsupportedPlatform:
    """Every operation on a platform without a backend resolves uniformly."""

    def test_availability_check_resolves_to_fallback(self):
        biometric = capability(BIOMETRIC, TargetPlatform.LINUX)

        assert asyncio.run(biometric.invoke("isAvailable")) is False
        assert asyncio.run(biometric.invoke("getBiometricType")) is None

    def test_biometric_not_available(self):
        biometric = capability(BIOMETRIC, TargetPlatform.LINUX)

        with pytest.raises(CapabilityNotAvailable) as exc_info:
            asyncio.run(biometric.invoke("authenticate", "Unlock"))

        assert exc_info.value.capability == "biometric"
        assert exc_info.value.operation == "authenticate"

    def test_clipboard_not_supported(self):
        clipboard = capability(CLIPBOARD, TargetPlatform.UNKNOWN)

        with pytest.raises(CapabilityNotSupported):
            asyncio.run(clipboard.invoke("getText"))

    def test_unknown_operation(self):
        clipboard = capability(CLIPBOARD, TargetPlatform.LINUX)

        with pytest.raises(CapabilityNotSupported):
            asyncio.run(clipboard.invoke("paste"))

    def test_for_context(self):
        context = TargetResolver.build_context({"CAPBRIDGE_TARGET_OS": "windows"})
        table = BackendRegistry(HAPTIC).bind()

        haptic = Capability.for_context(table, context)

        assert haptic.platform is TargetPlatform.WINDOWS
        assert haptic.name == "haptic"


class TestBlockingBackend:
    """Plain methods run on an executor thread."""

    def test_round_trip(self):
        backend = ThreadRecordingClipboard()
        clipboard = capability(CLIPBOARD, TargetPlatform.LINUX, backend)

        async def scenario():
            await clipboard.invoke("setText", "hello")
            return await clipboard.invoke("getText")

        assert asyncio.run(scenario()) == "hello"

    def test_runs_off_the_loop_thread(self):
        backend = ThreadRecordingClipboard()
        clipboard = capability(CLIPBOARD, TargetPlatform.LINUX, backend)

        async def scenario():
            await clipboard.invoke("getText")
            return threading.get_ident()

        loop_thread = asyncio.run(scenario())

        assert backend.threads
        assert loop_thread not in backend.threads

    def test_foreign_exception_becomes_platform_error(self):
        clipboard = capability(CLIPBOARD, TargetPlatform.LINUX, ThreadRecordingClipboard())

        with pytest.raises(PlatformError) as exc_info:
            asyncio.run(clipboard.invoke("getImage"))

        assert exc_info.value.detail == "pasteboard locked"
        assert exc_info.value.capability == "clipboard"
        assert exc_info.value.operation == "getImage"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_empty_exception_message_uses_type_name(self):
        clipboard = capability(CLIPBOARD, TargetPlatform.LINUX, ThreadRecordingClipboard())

        with pytest.raises(PlatformError) as exc_info:
            asyncio.run(clipboard.invoke("setImage", b""))

        assert exc_info.value.detail == "ValueError"


class TestInvocationLifecycle:
    def test_states(self):
        clipboard = capability(CLIPBOARD, TargetPlatform.LINUX, ThreadRecordingClipboard())

        async def scenario():
            invocation = clipboard.start("setText", "x")
            assert invocation.state is OperationState.INVOKED
            await invocation.result()
            return invocation

        invocation = asyncio.run(scenario())

        assert invocation.state is OperationState.COMPLETED
        assert invocation.done()
        assert invocation.error is None

    def test_failed_state(self):
        clipboard = capability(CLIPBOARD, TargetPlatform.LINUX)

        async def scenario():
            invocation = clipboard.start("getText")
            with pytest.raises(CapabilityNotSupported):
                await invocation.result()
            return invocation

        invocation = asyncio.run(scenario())

        assert invocation.state is OperationState.FAILED
        assert isinstance(invocation.error, CapabilityNotSupported)

    def test_typed_error_gets_context(self):
        haptic = capability(HAPTIC, TargetPlatform.ANDROID, SlowHaptic())

        with pytest.raises(CapabilityNotAvailable) as exc_info:
            asyncio.run(haptic.invoke("feedback", -1))

        assert str(exc_info.value) == "no haptic engine"
        assert exc_info.value.capability == "haptic"
        assert exc_info.value.operation == "feedback"

    def test_timeout_cancels_the_wait_not_the_call(self):
        backend = SlowHaptic()
        haptic = capability(HAPTIC, TargetPlatform.ANDROID, backend)

        async def scenario():
            backend.release = asyncio.Event()
            invocation = haptic.start("feedback", 1)
            with pytest.raises(OperationCancelledByCaller) as exc_info:
                await invocation.result(timeout=0.01)
            assert invocation.state is OperationState.PENDING
            backend.release.set()
            await invocation._task
            return invocation, exc_info.value

        invocation, error = asyncio.run(scenario())

        assert invocation.state is OperationState.COMPLETED
        assert error.operation == "feedback"

    def test_late_failure_is_discarded(self):
        backend = SlowHaptic()
        haptic = capability(HAPTIC, TargetPlatform.ANDROID, backend)

        async def scenario():
            backend.release = asyncio.Event()
            with pytest.raises(OperationCancelledByCaller):
                await haptic.invoke("feedback", -1, timeout=0.01)
            backend.release.set()
            await asyncio.sleep(0.05)

        asyncio.run(scenario())


class TestSerialization:
    def test_non_reentrant_operations_are_serialized(self):
        backend = SlowHaptic()
        haptic = capability(HAPTIC, TargetPlatform.ANDROID, backend)

        async def scenario():
            await asyncio.gather(*(haptic.invoke("feedback", 1) for _ in range(3)))

        asyncio.run(scenario())

        assert backend.max_active["feedback"] == 1

    def test_reentrant_operations_overlap(self):
        backend = SlowHaptic()
        haptic = capability(HAPTIC, TargetPlatform.ANDROID, backend)

        async def scenario():
            return await asyncio.gather(*(haptic.invoke("isSupported") for _ in range(3)))

        assert asyncio.run(scenario()) == [True, True, True]
        assert backend.max_active["isSupported"] == 3

    def test_backend_lookup(self):
        backend = SlowHaptic()
        haptic = capability(HAPTIC, TargetPlatform.ANDROID, backend)

        assert haptic.backend("feedback") is backend
        with pytest.raises(CapabilityNotSupported):
            haptic.backend("vibrate")
