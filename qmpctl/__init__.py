"""Control QEMU virtual machines over the QEMU Machine Protocol: client, scripts and the qmp command."""

__version__ = "0.1.0"
__all__ = ["__version__"]