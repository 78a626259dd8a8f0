"""
Blob storage for generated artifacts.

Files live under ``users/{userId}/documents/{artifactId}.{ext}`` below the
storage root, each with a JSON metadata sidecar. Download links are signed,
time-bounded tokens; a link is never refreshed, callers ask for a new one.
"""
import json
import logging
import os
from datetime import timedelta

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .config import MAX_SIGNED_URL_TTL
from .rendering import DOCX_CONTENT_TYPE, PDF_CONTENT_TYPE

logger = logging.getLogger(__name__)

EXTENSIONS = {
    PDF_CONTENT_TYPE: "pdf",
    DOCX_CONTENT_TYPE: "docx",
}

METADATA_SUFFIX = ".meta.json"


class InvalidDownloadLink(Exception):
    pass


class DownloadLinkExpired(InvalidDownloadLink):
    pass


def _as_ttl(ttl):
    if not isinstance(ttl, timedelta):
        ttl = timedelta(seconds=ttl)
    return min(ttl, MAX_SIGNED_URL_TTL)


def storage_path_for(user_id, artifact_id, extension):
    return f"users/{user_id}/documents/{artifact_id}.{extension}"


class ArtifactStore:
    def __init__(self, root, secret_key, base_url, default_ttl=MAX_SIGNED_URL_TTL):
        self.root = os.path.abspath(root)
        self.base_url = base_url.rstrip("/")
        self.default_ttl = _as_ttl(default_ttl)
        self._serializer = URLSafeTimedSerializer(secret_key, salt="artifact-download")
        os.makedirs(self.root, exist_ok=True)

    def _full_path(self, storage_path):
        full_path = os.path.normpath(os.path.join(self.root, storage_path))
        # Keep every resolved path inside the storage root
        if not full_path.startswith(self.root + os.sep):
            logger.error(f"Storage path escape detected: {storage_path}")
            raise ValueError(f"Invalid storage path: {storage_path}")
        return full_path

    def persist(self, user_id, artifact_id, data, content_type, metadata=None):
        """Write an artifact and return its storage path."""
        extension = EXTENSIONS.get(content_type)
        if extension is None:
            raise ValueError(f"Unsupported content type: {content_type}")
        if not user_id or "/" in user_id or user_id in (".", ".."):
            raise ValueError(f"Invalid user id for storage: {user_id!r}")

        storage_path = storage_path_for(user_id, artifact_id, extension)
        full_path = self._full_path(storage_path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)

        with open(full_path, "wb") as f:
            f.write(data)
        with open(full_path + METADATA_SUFFIX, "w", encoding="utf-8") as f:
            json.dump(dict(metadata or {}, contentType=content_type, size=len(data)), f, ensure_ascii=False)

        logger.info(f"Stored {storage_path} ({len(data)} bytes)")
        return storage_path

    def exists(self, storage_path):
        return os.path.exists(self._full_path(storage_path))

    def read(self, storage_path):
        with open(self._full_path(storage_path), "rb") as f:
            return f.read()

    def metadata(self, storage_path):
        sidecar = self._full_path(storage_path) + METADATA_SUFFIX
        if not os.path.exists(sidecar):
            return {}
        with open(sidecar, encoding="utf-8") as f:
            return json.load(f)

    def signed_url(self, storage_path, ttl=None):
        """Issue a download link valid for `ttl` (capped at seven days)."""
        ttl = self.default_ttl if ttl is None else _as_ttl(ttl)
        token = self._serializer.dumps({"path": storage_path, "ttl": int(ttl.total_seconds())})
        return f"{self.base_url}/files/{token}"

    def resolve_token(self, token):
        """Return the storage path a download token points at."""
        try:
            payload = self._serializer.loads(token, max_age=MAX_SIGNED_URL_TTL.total_seconds())
            self._serializer.loads(token, max_age=payload["ttl"])
        except SignatureExpired as e:
            raise DownloadLinkExpired("Download link expired") from e
        except (BadSignature, KeyError, TypeError) as e:
            raise InvalidDownloadLink("Invalid download link") from e
        return payload["path"]
