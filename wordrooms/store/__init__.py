"""Room storage backends.

Every backend implements `RoomStore` from `wordrooms.store.base` with the same
per-operation atomicity, so the session layer never needs to know which one it
is talking to.
"""
