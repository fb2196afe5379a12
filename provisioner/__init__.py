"""code-server provisioner — idempotent installer and control panel."""

__version__ = "0.1.0"
