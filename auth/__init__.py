"""auth/ -- Bearer token verification, blacklisting and global revocation.

Layer rule: auth/ imports stdlib + third-party libraries, and core/ only for
Settings typing and handler construction. It does NOT import from api/.
api/ and main.py import from auth/, not the other way around.
"""
