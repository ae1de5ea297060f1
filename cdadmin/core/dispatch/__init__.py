"""
Dispatch core: pure helpers used by the dispatch service.

- ``ids``: task token minting
- ``merge``: layered environment / secrets merging

Nothing in this package performs I/O.
"""
