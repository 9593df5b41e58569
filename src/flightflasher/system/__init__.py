"""System domain package.

This package contains host and target system components:
- PathResolver: Host-side settings, profile and cache locations
- ServiceStrategies: systemd enablement against an offline root filesystem
- Disks: Candidate disk discovery, unmount, mount and eject
- SystemUtils: Host command lookup and timezone detection
"""
