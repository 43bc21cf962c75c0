from __future__ import annotations

import importlib

import school_portal
from school_portal.modules import get_module_info


def test_every_listed_module_imports():
    for name in get_module_info():
        importlib.import_module(f'school_portal.modules.{name}')


def test_public_exports():
    for name in school_portal.__all__:
        assert hasattr(school_portal, name)
    assert school_portal.calculate_fee_balance(100, [100]).status == 'paid'
