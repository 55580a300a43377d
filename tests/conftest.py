"""
tests/conftest.py
Pytest configuration and fixtures
"""

import os
import sys
import warnings

import pytest


def pytest_configure(config):
    """Configure pytest with custom settings"""
    # Library internals (pandas, werkzeug, sqlalchemy) emit these; keep output readable
    warnings.filterwarnings("ignore", category=ResourceWarning)
    warnings.filterwarnings("ignore", category=DeprecationWarning)
    warnings.filterwarnings("ignore", category=FutureWarning)

    os.environ["PYTHONWARNINGS"] = "ignore::ResourceWarning"
    os.environ.setdefault("FLASK_ENV", "testing")

    config.addinivalue_line("filterwarnings", "ignore::ResourceWarning")
    config.addinivalue_line("filterwarnings", "ignore::DeprecationWarning")
    config.addinivalue_line("filterwarnings", "ignore::FutureWarning")


def pytest_collection_modifyitems(config, items):
    """Apply the ResourceWarning filter to every collected test"""
    for item in items:
        item.add_marker(pytest.mark.filterwarnings("ignore::ResourceWarning"))


@pytest.fixture(autouse=True)
def reset_config():
    """Every test starts from freshly loaded configuration"""
    from config.settings import Config

    Config.reload()
    yield
    Config.reload()


# SQLite files left open by short-lived CLI engines are reported at interpreter exit
_original_hook = sys.unraisablehook


def custom_unraisable_hook(unraisable_msg):
    """Ignore unclosed database ResourceWarnings"""
    if "unclosed database" not in str(unraisable_msg.exc_value):
        _original_hook(unraisable_msg)


sys.unraisablehook = custom_unraisable_hook
