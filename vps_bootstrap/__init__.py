"""
VPS Bootstrap
-------------

Provisions a fresh Ubuntu/Debian VPS through an ordered list of idempotent
steps: every step checks the live system first and is only applied when its
effect is missing, so a rerun converges instead of repeating work.

Requires root privileges.
"""

APP_NAME: str = "VPS Bootstrap"
APP_SUBTITLE: str = "Idempotent Server Provisioning"
VERSION: str = "1.0.0"

__version__ = VERSION
