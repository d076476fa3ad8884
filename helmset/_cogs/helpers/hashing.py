"""
Content-addressing of the desired states and of the tool outputs.

All hashes are SHA-256 in hex, so that they can be used in file names as is.
The same input always produces the same name, both within one process
and across processes.
"""
import hashlib
import json
from typing import Any


def digest(*chunks: str | bytes) -> str:
    """ Hash several chunks as if they were concatenated. """
    hasher = hashlib.sha256()
    for chunk in chunks:
        hasher.update(chunk.encode('utf-8') if isinstance(chunk, str) else chunk)
    return hasher.hexdigest()


def canonical(obj: Any) -> str:
    """
    Serialize the object to a canonical JSON form.

    The keys are sorted and no whitespace is added, so that the same data
    always produces the same text regardless of the dicts' insertion order.
    """
    return json.dumps(obj, sort_keys=True, separators=(',', ':'), default=str)
