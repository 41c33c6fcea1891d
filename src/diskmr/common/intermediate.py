"""
Key-partitioned intermediate store.

On-disk layout shared by map and reduce tasks:

    <scratch>/<key_hash>/<task_id>/key.meta
    <scratch>/<key_hash>/<task_id>/value-0001
    <scratch>/<key_hash>/<task_id>/value-0002
    ...

Each task writes only under its own <task_id> subdirectory, so concurrent
writers for the same key never touch the same file. Buckets must only be read
once every task writing into the scratch tree has returned.
"""

import hashlib
import os
import pickle
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

KEY_FILE = "key.meta"
CHUNK_PATTERN = re.compile(r"^value-(\d+)$")
PICKLE_PROTOCOL = 4


def key_hash(key: Any) -> str:
    """Content hash of a serialized key, used as the bucket directory name."""
    return hashlib.md5(pickle.dumps(key, protocol=PICKLE_PROTOCOL)).hexdigest()


def chunk_name(index: int) -> str:
    return f"value-{index:04d}"


def chunk_index(name: str) -> Optional[int]:
    match = CHUNK_PATTERN.match(name)
    return int(match.group(1)) if match else None


def dump_file(path: str, obj: Any):
    with open(path, "wb") as f:
        pickle.dump(obj, f, protocol=PICKLE_PROTOCOL)


def load_file(path: str) -> Any:
    with open(path, "rb") as f:
        return pickle.load(f)


@dataclass
class KeyBucket:
    """All value chunks sharing a key hash, across every task subdirectory"""
    key_hash: str
    path: str
    chunks: List[str] = field(default_factory=list)
    sizes: List[int] = field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(self.sizes)

    def load_key(self) -> Any:
        """Read the key from the first task subdirectory holding key.meta."""
        for task_id in sorted(os.listdir(self.path)):
            key_path = os.path.join(self.path, task_id, KEY_FILE)
            if os.path.exists(key_path):
                return load_file(key_path)
        raise FileNotFoundError(f"No {KEY_FILE} found in bucket {self.path}")

    def load_values(self, indices: Optional[Iterable[int]] = None) -> list:
        """Concatenate the contents of the selected chunks (all chunks by default)."""
        if indices is None:
            indices = range(len(self.chunks))
        values = []
        for i in indices:
            values.extend(load_file(self.chunks[i]))
        return values


class IntermediateStore:
    """Reader and writer for one scratch tree (map or reduce)"""

    def __init__(self, root: str):
        self.root = root

    def task_dir(self, hash_: str, task_id: str) -> str:
        """Return the task's directory for a bucket, creating it if needed."""
        path = os.path.join(self.root, hash_, task_id)
        os.makedirs(path, exist_ok=True)
        return path

    def write_key(self, hash_: str, task_id: str, key: Any) -> bool:
        """Record the serialized key for this task; the first write wins."""
        key_path = os.path.join(self.task_dir(hash_, task_id), KEY_FILE)
        if os.path.exists(key_path):
            return False
        dump_file(key_path, key)
        return True

    def write_chunk(self, hash_: str, task_id: str, values: list) -> str:
        """Append a new value chunk, numbered after the existing ones."""
        path = self.task_dir(hash_, task_id)
        existing = [chunk_index(name) for name in os.listdir(path)]
        existing = [i for i in existing if i is not None]
        next_index = max(existing) + 1 if existing else 1

        chunk_path = os.path.join(path, chunk_name(next_index))
        dump_file(chunk_path, values)
        return chunk_path

    def bucket(self, hash_: str) -> KeyBucket:
        bucket_path = os.path.join(self.root, hash_)
        bucket = KeyBucket(key_hash=hash_, path=bucket_path)
        for task_id in sorted(os.listdir(bucket_path)):
            task_path = os.path.join(bucket_path, task_id)
            if not os.path.isdir(task_path):
                continue
            names = [n for n in os.listdir(task_path) if chunk_index(n) is not None]
            for name in sorted(names, key=chunk_index):
                chunk_path = os.path.join(task_path, name)
                bucket.chunks.append(chunk_path)
                bucket.sizes.append(os.path.getsize(chunk_path))
        return bucket

    def buckets(self) -> List[KeyBucket]:
        """List every bucket in the tree, ordered by key hash."""
        if not os.path.isdir(self.root):
            return []
        result = []
        for hash_ in sorted(os.listdir(self.root)):
            if os.path.isdir(os.path.join(self.root, hash_)):
                result.append(self.bucket(hash_))
        return result
