"""
Owner directories: where (BSNR, LANR) pairs are registered to users.
"""

from .directory import InMemoryOwnerDirectory, OwnerDirectory, YamlOwnerDirectory

__all__ = ["OwnerDirectory", "InMemoryOwnerDirectory", "YamlOwnerDirectory"]
