"""
Blob Store Adapters

使用例:
    from secure_image.adapters.blob import InMemoryBlobStore, FileBlobStore
    from secure_image.adapters.blob.ipfs import IPFSBlobStore
"""

from .file import FileBlobStore
from .memory import InMemoryBlobStore

__all__ = [
    "InMemoryBlobStore",
    "FileBlobStore",
]
