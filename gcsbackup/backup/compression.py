"""
Archive builder for backup points.

Supports multiple formats:
- none: Plain tar (default)
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar

Archives of unchanged input produce the same fingerprint: tar members are
added in sorted order, gzip headers carry a fixed mtime, and the work
directory holding the archive is left out when it lies inside the source.
"""

import gzip
import hashlib
import logging
import os
import tarfile
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

FINGERPRINT_CHUNK_SIZE = 1024 * 1024


class ArchiveError(Exception):
    """Raised when archive creation fails."""
    pass


# format -> (extension, tarfile mode)
FORMAT_MAP = {
    'none': ('tar', 'w'),
    'tar.gz': ('tar.gz', None),
    'tar.bz2': ('tar.bz2', 'w:bz2'),
    'tar.xz': ('tar.xz', 'w:xz'),
}


def create_archive(
    source_path: str,
    output_path: str,
    compression_format: str = 'none',
    exclude_paths: Optional[List[str]] = None
) -> str:
    """
    Create an archive of a single file or directory tree.

    Args:
        source_path: Absolute path to back up
        output_path: Path where archive should be created (without extension)
        compression_format: Format to use ('none', 'tar.gz', 'tar.bz2', 'tar.xz')
        exclude_paths: Paths inside source_path to leave out of the archive

    Returns:
        Full path to the created archive file

    Raises:
        ArchiveError: If archive creation fails
        ValueError: If compression_format is invalid
    """
    if compression_format not in FORMAT_MAP:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(FORMAT_MAP.keys())}"
        )

    source = Path(source_path)
    if not source.exists():
        raise ArchiveError(f"Path does not exist: {source_path}")
    if not os.access(source, os.R_OK):
        raise ArchiveError(f"Path is not readable: {source_path}")

    extension, mode = FORMAT_MAP[compression_format]
    archive_path = f"{output_path}.{extension}"

    # Same member layout as `tar -cf archive.tar /abs/path`
    arcname = str(source).lstrip('/') or '.'
    member_filter = _exclude_filter(source, arcname, exclude_paths or [])

    try:
        if compression_format == 'tar.gz':
            _create_gzip_tar(source, archive_path, arcname, member_filter)
        else:
            with tarfile.open(archive_path, mode) as tar:
                tar.add(source, arcname=arcname, recursive=True, filter=member_filter)
        return archive_path
    except Exception as e:
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                logger.warning(f"Failed to remove partial archive: {archive_path}")
        raise ArchiveError(f"Failed to create archive: {e}")


def _exclude_filter(source: Path, arcname: str, exclude_paths: List[str]):
    """
    Build a tarfile filter dropping excluded paths.

    Directories between the source root and an excluded path change their
    mtime whenever the excluded entry is created or removed, so their mtime
    is pinned to keep the fingerprint stable.
    """
    source_real = os.path.realpath(str(source))
    excluded = set()
    pinned = set()

    for path in exclude_paths:
        relative = os.path.relpath(os.path.realpath(path), source_real)
        if relative == '.' or relative == '..' or relative.startswith('..' + os.sep):
            continue
        name = os.path.join(arcname, relative).replace(os.sep, '/')
        excluded.add(name)

        parent = os.path.dirname(name)
        while len(parent) >= len(arcname):
            pinned.add(parent)
            if parent == arcname:
                break
            parent = os.path.dirname(parent)

    def member_filter(tarinfo):
        if tarinfo.name in excluded:
            logger.debug(f"Excluding from archive: {tarinfo.name}")
            return None
        if tarinfo.name in pinned:
            tarinfo.mtime = 0
        return tarinfo

    return member_filter


def _create_gzip_tar(source: Path, archive_path: str, arcname: str, member_filter=None):
    """
    Create a gzip compressed tar with a fixed header timestamp.

    Args:
        source: Path to add
        archive_path: Output archive path
        arcname: Name of the top level member
        member_filter: tarfile filter applied to each member
    """
    with open(archive_path, 'wb') as raw:
        with gzip.GzipFile(filename='', mode='wb', fileobj=raw, mtime=0) as gz:
            with tarfile.open(fileobj=gz, mode='w') as tar:
                tar.add(source, arcname=arcname, recursive=True, filter=member_filter)


def compute_fingerprint(archive_path: str, algorithm: str = 'md5') -> str:
    """
    Compute the content fingerprint of an archive.

    Args:
        archive_path: Path to the archive file
        algorithm: hashlib algorithm name

    Returns:
        Hex digest of the file contents

    Raises:
        ArchiveError: If the archive cannot be read
        ValueError: If the algorithm is unknown
    """
    try:
        digest = hashlib.new(algorithm)
    except ValueError:
        raise ValueError(f"Unsupported fingerprint algorithm: {algorithm}")

    try:
        with open(archive_path, 'rb') as f:
            for chunk in iter(lambda: f.read(FINGERPRINT_CHUNK_SIZE), b''):
                digest.update(chunk)
    except OSError as e:
        raise ArchiveError(f"Failed to read archive {archive_path}: {e}")

    return digest.hexdigest()


def build_archive(
    source_path: str,
    work_dir: str,
    compression_format: str = 'none',
    algorithm: str = 'md5'
) -> Tuple[str, str]:
    """
    Archive a path into work_dir and fingerprint the result.

    work_dir itself is never archived, even when it lies inside source_path.

    Returns:
        Tuple of (archive path, fingerprint)

    Raises:
        ArchiveError: If the path is unreadable or the archive cannot be written
    """
    archive_path = create_archive(
        source_path,
        os.path.join(work_dir, 'archive'),
        compression_format,
        exclude_paths=[work_dir]
    )
    return archive_path, compute_fingerprint(archive_path, algorithm)


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        ArchiveError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise ArchiveError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise ArchiveError(f"Failed to get archive size: {e}")
