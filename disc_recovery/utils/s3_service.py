"""Drop-off photo storage on Cloudflare R2 (S3 API)."""
import io
import os
import uuid
from functools import lru_cache
from typing import Optional
from PIL import Image, ImageOps
import boto3
import structlog

log = structlog.get_logger(__name__)

BUCKET = os.getenv("R2_BUCKET")
FOLDER = "drop-offs"
SIGNED_URL_TTL = 3600


@lru_cache(maxsize=1)
def get_s3_client():
    return boto3.client(
        service_name="s3",
        endpoint_url=f"https://{os.getenv('CLOUDFLARE_ACCOUNT_ID')}.r2.cloudflarestorage.com",
        aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        region_name="auto",
    )


def compress_photo(data: bytes, max_side=1400, quality=80):
    """
    Returns (buffer, ext, content_type). Raises OSError for bytes Pillow
    cannot read.
    """
    img = Image.open(io.BytesIO(data))

    # Phone cameras store rotation in EXIF; bake it in before stripping metadata
    img = ImageOps.exif_transpose(img).convert("RGB")
    img.thumbnail((max_side, max_side), Image.LANCZOS)

    buffer = io.BytesIO()
    try:
        img.save(buffer, format="WEBP", quality=quality, method=6)
        ext, content_type = "webp", "image/webp"
    except (OSError, KeyError) as e:
        log.warning("webp_encode_failed", error=str(e))
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=quality, optimize=True)
        ext, content_type = "jpg", "image/jpeg"

    buffer.seek(0)
    return buffer, ext, content_type


def upload_to_s3(buffer: io.BytesIO, ext: str, content_type: str, recovery_event_id: uuid.UUID) -> str:
    key = f"{FOLDER}/{recovery_event_id}/{uuid.uuid4().hex}.{ext}"

    get_s3_client().upload_fileobj(buffer, BUCKET, key, ExtraArgs={"ContentType": content_type})
    log.info("photo_uploaded", key=key, recovery_event_id=str(recovery_event_id))

    return key


def generate_signed_url(key: Optional[str], expires_in=SIGNED_URL_TTL) -> Optional[str]:
    if not key:
        return None

    # Catalog photos are stored as public URLs
    if key.startswith(("http://", "https://")):
        return key

    try:
        return get_s3_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": BUCKET, "Key": key},
            ExpiresIn=expires_in,
        )
    except Exception as e:
        log.error("signed_url_failed", key=key, error=str(e))
        return None


def delete_s3_object(key: str):
    """Best effort: an orphaned photo is harmless, a failed request is not."""
    try:
        get_s3_client().delete_object(Bucket=BUCKET, Key=key)
    except Exception as e:
        log.error("s3_delete_failed", key=key, error=str(e))
