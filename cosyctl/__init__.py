"""cosyctl - install and uninstall the COSY stack."""

__version__ = "0.1.0"
