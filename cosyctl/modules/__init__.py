"""
Install/uninstall orchestration modules.
"""
from .engine import RunReport, install, uninstall

__all__ = [
    'RunReport',
    'install',
    'uninstall',
]
