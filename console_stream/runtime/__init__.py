"""Pure stream runtime: envelope decoding, log merging and the status machine.

Nothing here performs I/O. Import concrete submodules directly when needed.
"""
