"""
Storage layer for mirrored content.
"""

from .file_storage import FileStorage, StorageError

__all__ = ['FileStorage', 'StorageError']
