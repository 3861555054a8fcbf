"""Utility helpers for the try-on router."""

from fastapi import Request, UploadFile

from src.core.image_normalizer import MAX_FILE_SIZE, ImagePayload

DEFAULT_CLIENT_IP = "127.0.0.1"
IPV4_MAPPED_PREFIX = "::ffff:"


def get_client_ip(request: Request) -> str:
    """Extract the requester IP from common proxy headers."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and forwarded.split(",")[0].strip():
        ip = forwarded.split(",")[0].strip()
    elif request.headers.get("X-Real-IP"):
        ip = request.headers["X-Real-IP"].strip()
    elif request.client and request.client.host:
        ip = request.client.host
    else:
        ip = DEFAULT_CLIENT_IP

    if ip.lower().startswith(IPV4_MAPPED_PREFIX):
        ip = ip[len(IPV4_MAPPED_PREFIX):]
    return ip


async def read_upload(upload: UploadFile, role: str) -> ImagePayload:
    """Read an upload into memory, stopping one byte past the size ceiling."""
    data = await upload.read(MAX_FILE_SIZE + 1)
    declared_size = upload.size if upload.size is not None else len(data)
    return ImagePayload(
        data=data,
        content_type=upload.content_type or "",
        size=max(declared_size, len(data)),
        role=role,
    )
