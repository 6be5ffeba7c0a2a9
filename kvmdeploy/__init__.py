"""kvmdeploy package."""

__all__ = [
    "cli",
    "config",
    "constants",
    "definition",
    "exceptions",
    "fetch",
    "firmware",
    "models",
    "packages",
    "provisioner",
    "utils",
]
