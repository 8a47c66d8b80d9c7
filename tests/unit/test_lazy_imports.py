"""Tests for lazy import system in starpulse.__init__."""

from __future__ import annotations

import subprocess
import sys

import pytest


class TestLazyImports:
    """Test PEP 562 lazy loading in starpulse.__init__."""

    def test_lazy_import_does_not_eagerly_load(self):
        # Fresh interpreter so already-imported subpackages do not interfere
        code = (
            "import sys, starpulse; "
            "loaded = [m for m in ('starpulse.core', 'starpulse.services', 'starpulse.utils') "
            "if m in sys.modules]; "
            "print(','.join(loaded))"
        )
        result = subprocess.run(
            [sys.executable, "-c", code], capture_output=True, text=True, check=True
        )
        assert result.stdout.strip() == ""

    def test_lazy_import_resolves_on_access(self):
        from starpulse import Event, Relay
        from starpulse.models.event import Event as DirectEvent
        from starpulse.services.relay.service import Relay as DirectRelay

        assert Event is DirectEvent
        assert Relay is DirectRelay

    def test_lazy_import_caches_after_first_access(self):
        import starpulse

        _ = starpulse.sign_event
        assert "sign_event" in vars(starpulse)

    def test_lazy_import_invalid_attribute(self):
        import starpulse

        with pytest.raises(AttributeError, match="no_such_thing"):
            _ = getattr(starpulse, "no_such_thing")  # noqa: B009

    def test_all_exports_are_in_lazy_imports(self):
        import starpulse

        assert set(starpulse.__all__) == set(starpulse._LAZY_IMPORTS)

    def test_version(self):
        import starpulse

        assert isinstance(starpulse.__version__, str)
        assert starpulse.__version__
