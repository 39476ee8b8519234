"""Pytest configuration shared by the ridpack test suite."""

from __future__ import annotations

import sys
import typing as typ

import pytest

if typ.TYPE_CHECKING:
    from pathlib import Path

CMD_MOX_UNSUPPORTED = pytest.mark.skipif(
    sys.platform == "win32", reason="cmd-mox does not support Windows"
)

sys.modules.setdefault("ridpack_conftest", sys.modules[__name__])


class CmdDouble(typ.Protocol):
    """Contract for cmd-mox doubles that record expectations and behaviour."""

    call_count: int

    def with_args(self, *args: str) -> typ.Self:
        """Set the expected argv for the double."""
        ...

    def returns(
        self,
        *,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        **_: object,
    ) -> typ.Self:
        """Provide canned output for the command invocation."""
        ...


class CmdMoxEnvironment(typ.Protocol):
    """Subset of :class:`cmd_mox.EnvironmentManager` used in tests."""

    shim_dir: Path | None
    socket_path: Path | None


class CmdMox(typ.Protocol):
    """Typed façade for the cmd-mox pytest fixture used in tests."""

    environment: CmdMoxEnvironment

    def stub(self, command: str) -> CmdDouble:
        """Register a stubbed command double."""
        ...

    def spy(self, command: str) -> CmdDouble:
        """Register a spying command double."""
        ...

    def replay(self) -> None:
        """Activate the recorded doubles."""
        ...

    def verify(self) -> None:
        """Assert that recorded expectations were satisfied."""
        ...


def shim_path(cmd_mox: CmdMox, command: str) -> str:
    """Return the shim path for ``command`` ensuring the environment is ready."""
    shim_dir = cmd_mox.environment.shim_dir
    if shim_dir is None:  # pragma: no cover - defensive guard
        msg = "cmd-mox shim directory is unavailable"
        raise RuntimeError(msg)
    return str(shim_dir / command)


if sys.platform != "win32":  # pragma: win32 no cover - windows lacks cmd-mox
    pytest_plugins = ("cmd_mox.pytest_plugin",)
else:

    @pytest.fixture
    def cmd_mox() -> typ.NoReturn:  # pragma: win32 no cover
        """Skip tests that rely on cmd-mox on Windows."""
        pytest.skip("cmd-mox does not support Windows")
        unreachable = "unreachable"
        raise RuntimeError(unreachable)
