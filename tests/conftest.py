import pytest

from git_sticky_mirror.utils import logging as logging_mod


@pytest.fixture(autouse=True)
def _isolated_secrets(monkeypatch):
    # registered secrets are process-global; keep tests from leaking them into each other
    monkeypatch.setattr(logging_mod, "_secrets", set())
