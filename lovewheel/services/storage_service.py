"""Storage service — cover photo uploads to Supabase Storage (prod) or local disk (dev).

Supabase bucket: couple-photos (must be created in Supabase dashboard, public).
Local fallback: instance/uploads/ directory, used only when Supabase is not
configured.

One photo slot per gift: the object key is ``<gift_id>/cover.<ext>`` and a
re-upload overwrites it.
"""

import logging
import os

import requests
from flask import current_app

logger = logging.getLogger(__name__)

# MIME type -> stored extension
ALLOWED_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}


class StorageError(Exception):
    """Object store rejected or failed an upload."""


def _get_supabase_config():
    """Return Supabase storage config if available, else None."""
    url = current_app.config.get("SUPABASE_URL")
    key = current_app.config.get("SUPABASE_SERVICE_KEY")
    bucket = current_app.config.get("SUPABASE_STORAGE_BUCKET", "couple-photos")

    if url and key:
        return {"url": url.rstrip("/"), "key": key, "bucket": bucket}
    return None


def validate_image(file):
    """Validate an uploaded cover photo (from request.files).

    Returns (ok: bool, error: str|None).
    """
    if not file or not file.filename:
        return False, "No file selected."

    ext = os.path.splitext(file.filename)[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        return False, "Unsupported image type. Use JPG, PNG or WebP."

    if file.mimetype not in ALLOWED_TYPES:
        return False, "Only JPG, PNG or WebP images are allowed."

    # Check file size (read + seek back)
    file.seek(0, os.SEEK_END)
    size = file.tell()
    file.seek(0)

    max_bytes = current_app.config["MAX_PHOTO_BYTES"]
    if size > max_bytes:
        return False, f"Image too large. Max {max_bytes // (1024 * 1024)}MB."

    if size == 0:
        return False, "File is empty."

    return True, None


def cover_path(gift_id, content_type):
    return f"{gift_id}/cover.{ALLOWED_TYPES[content_type]}"


def upload_cover(file, gift_id):
    """Store a gift's cover photo and return metadata dict.

    Args:
        file: Werkzeug FileStorage from request.files (already validated)
        gift_id: The gift this photo belongs to

    Returns dict with:
        storage_path: key in bucket or path on disk
        content_type: MIME type
        file_size: bytes
        public_url: URL to access the file

    Raises StorageError if the object store rejects the upload.
    """
    content_type = file.mimetype
    storage_path = cover_path(gift_id, content_type)

    file_data = file.read()

    supabase = _get_supabase_config()
    if supabase:
        public_url = _upload_supabase(supabase, storage_path, file_data, content_type)
    else:
        public_url = _upload_local(storage_path, file_data)

    return {
        "storage_path": storage_path,
        "content_type": content_type,
        "file_size": len(file_data),
        "public_url": public_url,
    }


def _upload_supabase(config, path, data, content_type):
    """Upload to Supabase Storage with upsert. Returns public URL."""
    url = f"{config['url']}/storage/v1/object/{config['bucket']}/{path}"

    headers = {
        "Authorization": f"Bearer {config['key']}",
        "Content-Type": content_type,
        "Cache-Control": "3600",
        "x-upsert": "true",
    }

    try:
        resp = requests.post(url, headers=headers, data=data, timeout=30)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"Supabase upload failed for {path}: {e}")
        raise StorageError("Upload failed") from e

    logger.info(f"Uploaded to Supabase: {path}")
    return f"{config['url']}/storage/v1/object/public/{config['bucket']}/{path}"


def _upload_local(path, data):
    """Write to the local filesystem (dev). Returns URL path."""
    upload_dir = os.path.join(
        current_app.instance_path, "uploads", os.path.dirname(path)
    )
    os.makedirs(upload_dir, exist_ok=True)

    filepath = os.path.join(current_app.instance_path, "uploads", path)
    try:
        with open(filepath, "wb") as f:
            f.write(data)
    except OSError as e:
        logger.error(f"Local upload failed for {path}: {e}")
        raise StorageError("Upload failed") from e

    logger.info(f"Uploaded locally: {filepath}")
    # Served by the dev-only /uploads/<path> route
    return f"/uploads/{path}"


def delete_file(storage_path):
    """Delete a file from storage. Best-effort, does not raise."""
    supabase = _get_supabase_config()
    if supabase:
        try:
            url = f"{supabase['url']}/storage/v1/object/{supabase['bucket']}/{storage_path}"
            headers = {"Authorization": f"Bearer {supabase['key']}"}
            requests.delete(url, headers=headers, timeout=10)
        except requests.RequestException as e:
            logger.warning(f"Failed to delete from Supabase: {e}")
    else:
        filepath = os.path.join(current_app.instance_path, "uploads", storage_path)
        try:
            os.remove(filepath)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to delete local file: {e}")
