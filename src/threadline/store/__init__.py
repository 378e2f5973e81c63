"""Local document store for threads, containers and groups.

Layout:
    ~/.threads/
    ├── threads.json            # Live dataset (single JSON document)
    └── threads.backup.json     # Snapshot taken just before the last write

Layers, leaves first: ``codec`` (encode/decode, corruption recovery),
``backup`` (one-generation snapshot, swap restore), ``repository`` (CRUD,
batches), ``async_repository`` (deferred-result facade).
"""
