from pathlib import Path

import xxhash

from .. import config
from ..exceptions import FileHashError


class FileHasher:
    def compute_hash(self, path: Path) -> str:
        """
        Computes the XXH64 digest of the whole file as 16 hex chars.

        Only used to detect identical content, so a fast non-cryptographic
        hash is enough. Raises FileHashError if the file cannot be read.
        """
        h = xxhash.xxh64()
        try:
            with open(path, 'rb') as f:
                while chunk := f.read(config.HASH_CHUNK_SIZE):
                    h.update(chunk)
        except OSError as e:
            raise FileHashError(f"failed to hash {path}: {e}") from e
        return h.hexdigest()
