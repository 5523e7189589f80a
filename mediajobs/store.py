"""
Asset store: a flat directory of files named after opaque asset ids.

Every stored name starts with the id of the asset it belongs to, either
``{id}_{suffix}`` or ``{id}.{ext}``. Lookups re-list the directory on each
call; there is no in-memory index. Files that are still being written live
in a ``.staging`` sub-directory and are never visible to lookups.
"""

import logging
import os
import re
import uuid

from . import config
from .errors import InvalidParameterError, NotFoundError, StoreWriteError

logger = logging.getLogger(__name__)

STAGING_DIRNAME = ".staging"

# Name parts that follow the asset id in outputs derived from that asset
DERIVED_MARKERS = ("_segment_", "_enhanced", "_converted")

_UUID_PREFIX = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"
)


class Asset:
    """A file registered in the store"""

    def __init__(self, asset_id, stored_name, path, duration_seconds=None):
        self.id = asset_id
        self.stored_name = stored_name
        self.path = path
        self.duration_seconds = duration_seconds

    @property
    def url(self):
        return f"{config.URL_PREFIX}/{self.stored_name}"

    def __repr__(self):
        return f"Asset(id={self.id!r}, stored_name={self.stored_name!r})"

    def __eq__(self, other):
        return (
            isinstance(other, Asset)
            and self.stored_name == other.stored_name
            and self.path == other.path
        )

    def __hash__(self):
        return hash((self.stored_name, self.path))


def new_asset_id():
    return str(uuid.uuid4())


def asset_id_of(stored_name):
    """Extract the asset id a stored name was created under"""
    match = _UUID_PREFIX.match(stored_name)
    if match:
        return match.group(0)
    # Names not produced by create(): fall back to the stem before any suffix
    return re.split(r"[_.]", stored_name, maxsplit=1)[0]


def is_derived(stored_name):
    """True for enhanced, converted and segment outputs of another asset"""
    rest = stored_name[len(asset_id_of(stored_name)):]
    return rest.startswith(DERIVED_MARKERS)


def _resolution_order(stored_name):
    return (is_derived(stored_name), stored_name)


class AssetStore:
    """Directory-backed asset registry"""

    def __init__(self, root=None):
        self.root = os.path.abspath(root or config.UPLOAD_DIR)
        self.staging_dir = os.path.join(self.root, STAGING_DIRNAME)
        os.makedirs(self.staging_dir, exist_ok=True)
        logger.debug(f"AssetStore initialized at: {self.root}")

    def path_for(self, stored_name):
        return os.path.join(self.root, stored_name)

    def staging_path(self, suffix=""):
        """Return a fresh path for a file that is not registered yet"""
        return os.path.join(self.staging_dir, f"{uuid.uuid4().hex}{suffix}")

    def create(self, source_path, suffix):
        """Move ``source_path`` into the store under a fresh id.

        ``suffix`` is appended verbatim, so callers pass ``"_name.ext"`` or
        ``".ext"``.
        """
        asset_id = new_asset_id()
        asset = self.publish(source_path, f"{asset_id}{suffix}")
        asset.id = asset_id
        return asset

    def publish(self, source_path, stored_name):
        """Move a finished file into the store under ``stored_name``.

        An existing file with the same name is replaced.
        """
        if (not stored_name or os.path.basename(stored_name) != stored_name
                or stored_name.startswith(".")):
            raise InvalidParameterError(f"Invalid stored name: {stored_name}")

        target = self.path_for(stored_name)
        try:
            os.replace(source_path, target)
        except OSError as e:
            logger.error(f"Failed to move {source_path} into store as {stored_name}: {e}")
            raise StoreWriteError(
                f"Could not store file: {e.strerror or e}",
                {"source": source_path, "stored_name": stored_name},
            )

        logger.info(f"Stored {stored_name}")
        return Asset(asset_id_of(stored_name), stored_name, target)

    def _list_names(self):
        try:
            entries = os.listdir(self.root)
        except FileNotFoundError:
            return []
        return sorted(
            name for name in entries
            if os.path.isfile(os.path.join(self.root, name))
        )

    def resolve_by_prefix(self, file_id):
        """Return the asset whose stored name starts with ``file_id``.

        When several names match, ingested files rank before outputs derived
        from them, then names sort lexicographically. Derived outputs stay
        reachable through resolve_literal().
        """
        if not isinstance(file_id, str) or not file_id.strip():
            raise InvalidParameterError("fileId is required")
        if os.path.basename(file_id) != file_id:
            raise InvalidParameterError(f"Invalid fileId: {file_id}")

        matches = sorted(
            (name for name in self._list_names() if name.startswith(file_id)),
            key=_resolution_order,
        )
        if not matches:
            logger.info(f"No stored file matches id {file_id}")
            raise NotFoundError(f"File not found: {file_id}", {"file_id": file_id})
        if len(matches) > 1:
            logger.debug(f"Id {file_id} matches {len(matches)} files, using {matches[0]}")

        stored_name = matches[0]
        return Asset(asset_id_of(stored_name), stored_name, self.path_for(stored_name))

    def resolve_literal(self, stored_name):
        """Return the asset stored under exactly ``stored_name``"""
        if not isinstance(stored_name, str) or not stored_name.strip():
            raise InvalidParameterError("segment name is required")
        if (os.path.basename(stored_name) != stored_name
                or stored_name in (".", "..")
                or stored_name.startswith(".")):
            raise InvalidParameterError(f"Invalid segment name: {stored_name}")

        path = self.path_for(stored_name)
        if not os.path.isfile(path):
            raise NotFoundError(
                f"File not found: {stored_name}", {"stored_name": stored_name}
            )
        return Asset(asset_id_of(stored_name), stored_name, path)

    def purge(self):
        """Delete every stored and staged file, best-effort.

        Returns the number of files removed.
        """
        removed = 0
        failed = 0
        for directory in (self.root, self.staging_dir):
            try:
                names = os.listdir(directory)
            except FileNotFoundError:
                continue
            for name in names:
                file_path = os.path.join(directory, name)
                if not os.path.isfile(file_path):
                    continue
                try:
                    os.remove(file_path)
                    removed += 1
                except OSError as e:
                    failed += 1
                    logger.warning(f"Failed to remove {file_path}: {e}")

        logger.info(f"Purge completed: {removed} files removed, {failed} errors")
        return removed

    def discard(self, *file_paths):
        """Remove unregistered files, ignoring the ones already gone"""
        for file_path in file_paths:
            if file_path and os.path.exists(file_path):
                try:
                    os.remove(file_path)
                    logger.debug(f"Cleaned up temp file: {file_path}")
                except OSError as e:
                    logger.warning(f"Failed to clean up temp file {file_path}: {e}")
