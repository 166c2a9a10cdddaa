"""Desktop Provisioner — installs a Wayland desktop stack on Linux hosts."""

__version__ = "0.1.0"
