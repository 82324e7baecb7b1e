"""
Blob store for uploaded migration sources.

Backed by Django's default storage: local filesystem in development,
MinIO through django-storages in production. Keys are scoped per clinic
and job:
    migration/<clinic_id>/<job_id>/<uuid>-<filename>
"""
import hashlib
import uuid
from contextlib import contextmanager

from django.core.files.storage import default_storage
from django.utils.text import get_valid_filename

from apps.core.observability import get_sanitized_logger

logger = get_sanitized_logger(__name__)

CHUNK_SIZE = 64 * 1024


def build_blob_key(job, filename):
    safe_name = get_valid_filename(filename or 'upload') or 'upload'
    return f'migration/{job.clinic_id}/{job.id}/{uuid.uuid4().hex}-{safe_name}'


def file_sha256(uploaded_file):
    """Hash an uploaded file chunk by chunk and rewind it."""
    digest = hashlib.sha256()
    for chunk in uploaded_file.chunks(CHUNK_SIZE):
        digest.update(chunk)
    uploaded_file.seek(0)
    return digest.hexdigest()


class BlobStore:
    """Thin wrapper over a Django storage backend."""

    def __init__(self, storage=None):
        self.storage = storage or default_storage

    def save(self, job, uploaded_file):
        """
        Store an upload for job.

        Returns:
            (key, sha256, size_bytes)
        """
        sha256 = file_sha256(uploaded_file)
        key = self.storage.save(build_blob_key(job, uploaded_file.name), uploaded_file)
        size = uploaded_file.size

        logger.info(
            'Migration source stored',
            extra={'event': 'migration_blob_stored', 'job_id': job.id, 'blob_key': key, 'size_bytes': size}
        )
        return key, sha256, size

    @contextmanager
    def open(self, key):
        """Open a stored blob as a binary stream; closed on exit."""
        stored = self.storage.open(key, 'rb')
        try:
            # Parsers need the raw binary stream, not Django's File proxy
            yield getattr(stored, 'file', stored)
        finally:
            stored.close()

    def delete(self, key):
        self.storage.delete(key)
        logger.info(
            'Migration source deleted',
            extra={'event': 'migration_blob_deleted', 'blob_key': key}
        )
