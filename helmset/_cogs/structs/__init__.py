"""
The data structures of the release sets and of their attribute bags.

All the structures here are purely data-holding and computational:
no external processes are spawned, though some of them peek at the files.
"""
