"""Asset loading."""

from .loader import AssetLoader, find_main_file, strip_root_folder

__all__ = ["AssetLoader", "find_main_file", "strip_root_folder"]
