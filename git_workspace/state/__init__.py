"""State management (manifest file)"""
from .manifest import Manifest, Workspace, load_manifest, save_manifest

__all__ = ["Manifest", "Workspace", "load_manifest", "save_manifest"]
