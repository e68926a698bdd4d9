from wavefleet_core.storage.documents import read_items, write_items
from wavefleet_core.storage.paths import control_document_uri, join_uri, local_path

__all__ = [
    "control_document_uri",
    "join_uri",
    "local_path",
    "read_items",
    "write_items",
]
