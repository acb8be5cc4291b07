"""Bitmap freelist, Robin Hood hash table, and a UNIX-socket message protocol with daemon and client."""

__version__ = "0.1.0"
__all__ = ["freelist", "hashtable", "protocol", "daemon", "client"]