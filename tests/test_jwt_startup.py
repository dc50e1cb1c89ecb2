"""
tests/test_jwt_startup.py — JWT Secret Validation
==================================================
The seeding API must refuse to start when JWT_SECRET is missing, blank,
too short, or a known weak default.
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from seedcall.api.deps import _load_jwt_secret


class TestJWTSecretValidation:
    def test_rejects_missing_secret(self):
        env = {k: v for k, v in os.environ.items() if k != "JWT_SECRET"}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(RuntimeError, match="is not set"):
                _load_jwt_secret()

    @pytest.mark.parametrize("secret", ["seedcall-dev-secret-change-me", "change-me", "secret"])
    def test_rejects_weak_defaults(self, secret):
        with patch.dict(os.environ, {"JWT_SECRET": secret}):
            with pytest.raises(RuntimeError, match="known weak default"):
                _load_jwt_secret()

    def test_rejects_short_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": "s" * 31}):
            with pytest.raises(RuntimeError, match=r"too short \(31 chars\)"):
                _load_jwt_secret()

    def test_accepts_strong_secret(self):
        with patch.dict(os.environ, {"JWT_SECRET": "k" * 32}):
            assert _load_jwt_secret() == "k" * 32
