"""
raindrop-sync - Import Raindrop.io highlights into a Markdown vault

Pulls highlights from Raindrop.io, writes one note per article into a local
vault and archives the notes of bookmarks that were trashed or deleted.
"""

from ._version import VERSION

__version__ = VERSION
__all__ = ["VERSION"]
