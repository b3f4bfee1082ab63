"""
Unit tests for native toolchain discovery.
"""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from capbridge.config.target import TargetPlatform, TargetResolver
from capbridge.errors import ToolchainNotFound
from capbridge.toolchain.locator import ToolchainDescriptor, ToolchainLocator


def context_for(target_os, arch="arm64", **env):
    environ = {"CAPBRIDGE_TARGET_OS": target_os, "CAPBRIDGE_TARGET_ARCH": arch}
    environ.update({key: str(value) for key, value in env.items()})
    return TargetResolver.build_context(environ)


class TestUnbridgedPlatforms:
    @pytest.mark.parametrize("target_os", ["linux", "windows", "haiku"])
    def test_no_toolchain(self, tmp_path, target_os):
        locator = ToolchainLocator(context_for(target_os, PATH=tmp_path))

        with pytest.raises(ToolchainNotFound) as exc_info:
            locator.locate(tmp_path / "out")

        assert "No bridge toolchain" in str(exc_info.value)


class TestAppleToolchain:
    """Test suite for Apple toolchain discovery."""

    @pytest.fixture
    def apple_env(self, tmp_path, make_tool):
        """swiftc override, SDK directory and ar/nm on PATH."""
        swiftc = make_tool("toolchain/usr/bin/swiftc")
        make_tool("bin/ar")
        make_tool("bin/nm")
        sdk = tmp_path / "iPhoneOS.sdk"
        sdk.mkdir()
        return {
            "CAPBRIDGE_SWIFTC": swiftc,
            "SDKROOT": sdk,
            "PATH": tmp_path / "bin",
        }

    def test_locate_mobile(self, tmp_path, apple_env):
        descriptor = ToolchainLocator(context_for("ios", **apple_env)).locate(tmp_path / "out")

        swiftc = apple_env["CAPBRIDGE_SWIFTC"]
        assert descriptor.platform is TargetPlatform.APPLE_MOBILE
        assert descriptor.compiler == swiftc
        assert descriptor.sdk_root == apple_env["SDKROOT"]
        assert descriptor.target == "arm64-apple-ios14.0"
        assert descriptor.tool("ar") == tmp_path / "bin" / "ar"
        assert descriptor.tool("nm") == tmp_path / "bin" / "nm"
        assert descriptor.output_dir == tmp_path / "out"
        assert descriptor.runtime_search_paths == (
            swiftc.resolve().parent.parent / "lib" / "swift" / "iphoneos",
        )

    @pytest.mark.parametrize(
        "arch,expected",
        [("x86_64", "x86_64-apple-macos12.3"), ("arm64", "arm64-apple-macos12.3")],
    )
    def test_desktop_target(self, tmp_path, apple_env, arch, expected):
        descriptor = ToolchainLocator(context_for("macos", arch=arch, **apple_env)).locate(tmp_path)

        assert descriptor.target == expected
        assert descriptor.runtime_search_paths[0].name == "macosx"

    def test_missing_swiftc(self, tmp_path, make_tool):
        make_tool("bin/ar")
        env = {"PATH": tmp_path / "bin", "SDKROOT": tmp_path}

        with pytest.raises(ToolchainNotFound) as exc_info:
            ToolchainLocator(context_for("ios", **env)).locate(tmp_path / "out")

        assert "swiftc" in str(exc_info.value)
        assert exc_info.value.platform == "apple-mobile"

    def test_override_must_exist(self, tmp_path, apple_env):
        apple_env["CAPBRIDGE_SWIFTC"] = tmp_path / "missing" / "swiftc"

        with pytest.raises(ToolchainNotFound) as exc_info:
            ToolchainLocator(context_for("ios", **apple_env)).locate(tmp_path)

        assert exc_info.value.path == tmp_path / "missing" / "swiftc"

    def test_missing_nm(self, tmp_path, apple_env):
        (tmp_path / "bin" / "nm").unlink()

        with pytest.raises(ToolchainNotFound) as exc_info:
            ToolchainLocator(context_for("ios", **apple_env)).locate(tmp_path)

        assert "nm" in str(exc_info.value)

    def test_xcrun_queries(self, tmp_path, make_tool):
        make_tool("bin/xcrun")
        make_tool("bin/ar")
        make_tool("bin/nm")
        swiftc = make_tool("Xcode/usr/bin/swiftc")
        sdk = tmp_path / "MacOSX.sdk"
        sdk.mkdir()

        def fake_xcrun(cmd, **kwargs):
            if cmd[1:] == ["--find", "swiftc"]:
                return MagicMock(returncode=0, stdout=f"{swiftc}\n", stderr="")
            if cmd[1:] == ["--sdk", "macosx", "--show-sdk-path"]:
                return MagicMock(returncode=0, stdout=f"{sdk}\n", stderr="")
            return MagicMock(returncode=1, stdout="", stderr="unknown")

        context = context_for("macos", PATH=tmp_path / "bin")
        with patch("capbridge.toolchain.locator.subprocess.run", side_effect=fake_xcrun) as mock_run:
            descriptor = ToolchainLocator(context).locate(tmp_path / "out")

        assert descriptor.compiler == swiftc
        assert descriptor.sdk_root == sdk
        assert mock_run.call_args_list[0].args[0][0] == str(tmp_path / "bin" / "xcrun")

    def test_xcrun_timeout_means_not_found(self, tmp_path, make_tool):
        make_tool("bin/xcrun")
        context = context_for("ios", PATH=tmp_path / "bin")

        with patch(
            "capbridge.toolchain.locator.subprocess.run",
            side_effect=subprocess.TimeoutExpired("xcrun", 30),
        ):
            with pytest.raises(ToolchainNotFound):
                ToolchainLocator(context).locate(tmp_path)


class TestAndroidToolchain:
    """Test suite for Android SDK discovery."""

    @pytest.fixture
    def android_env(self, tmp_path, make_tool):
        """An SDK with two platforms and two build-tools versions."""
        sdk = tmp_path / "sdk"
        for level in ("33", "34"):
            make_tool(f"sdk/platforms/android-{level}/android.jar")
        (sdk / "platforms" / "android-UpsideDownCake").mkdir()
        for version in ("33.0.2", "34.0.0", "9.0.0"):
            make_tool(f"sdk/build-tools/{version}/lib/d8.jar")
        make_tool("jdk/bin/java")
        make_tool("jdk/bin/javap")
        make_tool("kotlin/bin/kotlinc")
        return {
            "ANDROID_HOME": sdk,
            "JAVA_HOME": tmp_path / "jdk",
            "KOTLIN_HOME": tmp_path / "kotlin",
            "PATH": tmp_path / "empty",
        }

    def test_locate(self, tmp_path, android_env):
        context = context_for("android", arch="aarch64", **android_env)

        descriptor = ToolchainLocator(context).locate(tmp_path / "out")

        sdk = android_env["ANDROID_HOME"]
        assert descriptor.platform is TargetPlatform.ANDROID
        assert descriptor.compiler == tmp_path / "kotlin" / "bin" / "kotlinc"
        assert descriptor.sdk_root == sdk
        assert descriptor.tool("android_jar") == sdk / "platforms" / "android-34" / "android.jar"
        assert descriptor.tool("d8") == sdk / "build-tools" / "34.0.0" / "lib" / "d8.jar"
        assert descriptor.tool("java") == tmp_path / "jdk" / "bin" / "java"
        assert descriptor.tool("javap") == tmp_path / "jdk" / "bin" / "javap"
        assert descriptor.target == context.triple
        assert descriptor.runtime_search_paths == ()

    def test_sdk_root_fallback(self, tmp_path, android_env):
        android_env["ANDROID_SDK_ROOT"] = android_env.pop("ANDROID_HOME")

        descriptor = ToolchainLocator(context_for("android", **android_env)).locate(tmp_path)

        assert descriptor.sdk_root == tmp_path / "sdk"

    def test_pinned_api_level(self, tmp_path, android_env):
        context = context_for("android", CAPBRIDGE_ANDROID_API="33", **android_env)

        descriptor = ToolchainLocator(context).locate(tmp_path)

        assert descriptor.tool("android_jar").parent.name == "android-33"

    def test_pinned_api_level_must_be_installed(self, tmp_path, android_env):
        context = context_for("android", CAPBRIDGE_ANDROID_API="21", **android_env)

        with pytest.raises(ToolchainNotFound):
            ToolchainLocator(context).locate(tmp_path)

    def test_missing_sdk(self, tmp_path):
        with pytest.raises(ToolchainNotFound) as exc_info:
            ToolchainLocator(context_for("android", PATH=tmp_path)).locate(tmp_path)

        assert "ANDROID_HOME" in str(exc_info.value)

    def test_missing_build_tools(self, tmp_path, make_tool):
        make_tool("sdk/platforms/android-34/android.jar")

        with pytest.raises(ToolchainNotFound) as exc_info:
            ToolchainLocator(context_for("android", ANDROID_HOME=tmp_path / "sdk")).locate(tmp_path)

        assert "d8.jar" in str(exc_info.value)

    def test_missing_kotlinc(self, tmp_path, android_env):
        del android_env["KOTLIN_HOME"]

        with pytest.raises(ToolchainNotFound) as exc_info:
            ToolchainLocator(context_for("android", **android_env)).locate(tmp_path)

        assert "kotlinc" in str(exc_info.value)

    def test_kotlinc_from_path(self, tmp_path, android_env, make_tool):
        del android_env["KOTLIN_HOME"]
        kotlinc = make_tool("empty/kotlinc")

        descriptor = ToolchainLocator(context_for("android", **android_env)).locate(tmp_path)

        assert descriptor.compiler == kotlinc


class TestToolchainDescriptor:
    def test_unknown_tool_role(self, tmp_path):
        descriptor = ToolchainDescriptor(platform=TargetPlatform.ANDROID, compiler=tmp_path)

        with pytest.raises(ToolchainNotFound):
            descriptor.tool("ar")

    def test_verify_names_missing_path(self, tmp_path):
        descriptor = ToolchainDescriptor(
            platform=TargetPlatform.APPLE_MOBILE,
            compiler=tmp_path,
            tools={"nm": tmp_path / "nm"},
        )

        with pytest.raises(ToolchainNotFound) as exc_info:
            descriptor.verify()

        assert exc_info.value.path == tmp_path / "nm"

    def test_verify_rejects_non_executable_compiler(self, tmp_path, make_tool):
        swiftc = make_tool("bin/swiftc")
        swiftc.chmod(0o644)
        descriptor = ToolchainDescriptor(platform=TargetPlatform.APPLE_MOBILE, compiler=swiftc)

        with pytest.raises(ToolchainNotFound) as exc_info:
            descriptor.verify()

        assert exc_info.value.path == swiftc
        assert "not executable" in str(exc_info.value)

    def test_verify_allows_jars_without_exec_bit(self, tmp_path, make_tool):
        d8 = make_tool("sdk/build-tools/34.0.0/lib/d8.jar")
        d8.chmod(0o644)
        descriptor = ToolchainDescriptor(
            platform=TargetPlatform.ANDROID,
            compiler=make_tool("bin/kotlinc"),
            tools={"d8": d8, "java": make_tool("bin/java")},
        )

        descriptor.verify()

    def test_to_dict(self):
        descriptor = ToolchainDescriptor(
            platform=TargetPlatform.APPLE_MOBILE,
            compiler=Path("/usr/bin/swiftc"),
            tools={"nm": Path("/usr/bin/nm"), "ar": Path("/usr/bin/ar")},
            sdk_root=Path("/sdk"),
            target="arm64-apple-ios14.0",
            output_dir=Path("/out"),
        )

        data = descriptor.to_dict()

        assert list(data["tools"]) == ["ar", "nm"]
        assert data["platform"] == "apple-mobile"
        assert data["sdk_root"] == "/sdk"
        assert data["runtime_search_paths"] == []
