import os
from datetime import timedelta

from vilo.core.config import settings


def _gcs_bucket():
    try:
        from google.cloud import storage  # type: ignore
    except ImportError as e:
        raise RuntimeError("google-cloud-storage is not installed. Install requirements and retry") from e
    client = storage.Client()
    return client.bucket(settings.GCS_BUCKET_NAME)


def use_gcs() -> bool:
    return bool(settings.GCS_BUCKET_NAME and settings.GOOGLE_APPLICATION_CREDENTIALS)


def store_object(object_key: str, data: bytes, content_type: str) -> tuple[str, str]:
    """Store bytes and return (storage_backend, object_key). GCS when configured, local disk otherwise."""
    if use_gcs():
        blob = _gcs_bucket().blob(object_key)
        blob.upload_from_string(data, content_type=content_type)
        return "gcs", object_key

    base = settings.DOCUMENT_LOCAL_DIR or "./data/documents"
    path = os.path.join(base, *object_key.split("/"))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
    return "local", path


def delete_object(storage: str, object_key: str) -> None:
    if storage == "gcs":
        _gcs_bucket().blob(object_key).delete()
        return
    if object_key and os.path.exists(object_key):
        os.remove(object_key)


def signed_url(object_key: str, ttl_minutes: int | None = None) -> str:
    blob = _gcs_bucket().blob(object_key)
    return blob.generate_signed_url(
        expiration=timedelta(minutes=ttl_minutes or settings.DOCUMENT_URL_TTL_MINUTES),
        method="GET",
    )
