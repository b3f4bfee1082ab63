"""Built-in capability definitions.

Each definition lists the operations a backend must implement. The
declarations double as bridge signatures: a project module whose ``capability``
key names one of these gets its operations from here.
"""

from typing import Dict

from .definition import CapabilityDefinition, CapabilityOperation as Op
from .errors import CapabilityNotAvailable

BIOMETRIC = CapabilityDefinition(
    name="biometric",
    version=1,
    operations=(
        Op("reentrant isAvailable() -> bool", fallback=False),
        Op("async authenticate(reason: borrowed string)"),
        # 1 = fingerprint, 2 = face, 3 = iris
        Op("reentrant getBiometricType() -> i32?", fallback=None),
    ),
    unavailable_error=CapabilityNotAvailable,
)

CLIPBOARD = CapabilityDefinition(
    name="clipboard",
    version=1,
    operations=(
        Op("getText() -> owned string?"),
        Op("setText(text: borrowed string)"),
        Op("getImage() -> owned bytes?"),
        Op("setImage(image: borrowed bytes)"),
    ),
)

LOCATION = CapabilityDefinition(
    name="location",
    version=1,
    operations=(
        Op("reentrant isAvailable() -> bool", fallback=False),
        Op("async requestPermission() -> bool"),
        # JSON object: latitude, longitude, accuracy, timestamp
        Op("async currentLocation() -> owned string"),
    ),
)

NOTIFICATION = CapabilityDefinition(
    name="notification",
    version=1,
    operations=(
        Op("async requestPermission() -> bool"),
        Op("show(title: borrowed string, body: borrowed string)"),
    ),
)

HAPTIC = CapabilityDefinition(
    name="haptic",
    version=1,
    operations=(
        Op("reentrant isSupported() -> bool", fallback=False),
        # 0 = light, 1 = medium, 2 = heavy, 3 = success, 4 = warning, 5 = error
        Op("reentrant feedback(style: i32)"),
    ),
)

DIALOG = CapabilityDefinition(
    name="dialog",
    version=1,
    operations=(
        Op("async alert(title: borrowed string, message: borrowed string)"),
        Op("async confirm(title: borrowed string, message: borrowed string) -> bool"),
        Op("async pickFile(title: borrowed string?) -> owned string?"),
    ),
)

FS = CapabilityDefinition(
    name="fs",
    version=1,
    operations=(
        Op("reentrant documentsDir() -> owned string?"),
        Op("reentrant cacheDir() -> owned string?"),
    ),
)

SYSTEM = CapabilityDefinition(
    name="system",
    version=1,
    operations=(
        # 0 = nominal, 1 = fair, 2 = serious, 3 = critical
        Op("reentrant thermalState() -> i32"),
        Op("reentrant batteryLevel() -> f32?", fallback=None),
        Op("reentrant isConnected() -> bool"),
    ),
)

CAMERA = CapabilityDefinition(
    name="camera",
    version=1,
    operations=(
        Op("reentrant isAvailable() -> bool", fallback=False),
        Op("open(cameraId: borrowed string?)"),
        Op("captureFrame() -> owned bytes"),
        Op("close()"),
    ),
)

CODEC = CapabilityDefinition(
    name="codec",
    version=1,
    operations=(
        Op("reentrant isSupported(codec: borrowed string) -> bool", fallback=False),
        Op("encode(codec: borrowed string, frame: borrowed bytes) -> owned bytes"),
        Op("decode(codec: borrowed string, data: borrowed bytes) -> owned bytes"),
    ),
)

CATALOG: Dict[str, CapabilityDefinition] = {
    definition.name: definition
    for definition in (
        BIOMETRIC,
        CLIPBOARD,
        LOCATION,
        NOTIFICATION,
        HAPTIC,
        DIALOG,
        FS,
        SYSTEM,
        CAMERA,
        CODEC,
    )
}


def get_definition(name: str) -> CapabilityDefinition:
    """Look up a built-in capability by name.

    Raises:
        KeyError: If no capability has that name
    """
    try:
        return CATALOG[name]
    except KeyError:
        raise KeyError(
            f"Unknown capability '{name}'. Known: {', '.join(sorted(CATALOG))}"
        ) from None
