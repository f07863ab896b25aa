"""sim-apps: application lifecycle management for a single simulator device.

Provides:
- bundle resolution (raw `.app` or IPA archive), metadata parsing and
  architecture compatibility checks
- install / uninstall / query / launch / kill commands bound to one device
- the `appctl` command-line front end
"""

__all__ = [
    "bundle",
    "cli",
    "config",
    "errors",
    "runtime",
]
