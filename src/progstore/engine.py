"""
Content addressing engine.

Owns the upload and fetch contract:

- upload: classify, hash (off the event loop), insert once per hash
- fetch: normalize the caller's hash, resolve it, stream the payload back

Classification and parse errors are raised before the store is touched.
"""

from __future__ import annotations

import asyncio

from progstore.config import Settings
from progstore.exceptions import DuplicateContentError, NotFoundError, PayloadTooLargeError
from progstore.felt import normalize_hash
from progstore.hashing import HashOptions, identify
from progstore.logging import get_logger
from progstore.storage import ProgramStore
from progstore.storage.store import DEFAULT_CHUNK_SIZE
from progstore.types import (
    Artifact,
    DuplicatePolicy,
    Identification,
    ProgramStream,
    UploadResult,
)

logger = get_logger(__name__)


class ContentAddressingEngine:
    """Classifies, hashes and stores program blobs; resolves hashes to bytes.

    Args:
        store: Initialized program store. Its pool is owned by the caller.
        hash_options: Protocol constants for the hash strategies.
        duplicate_policy: What to do when an upload's hash already exists.
        max_upload_bytes: Optional upload cap; None means unbounded.
        chunk_size: Chunk size for streamed reads.
    """

    def __init__(
        self,
        store: ProgramStore,
        *,
        hash_options: HashOptions | None = None,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.IGNORE,
        max_upload_bytes: int | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.store = store
        self.hash_options = hash_options or HashOptions()
        self.duplicate_policy = duplicate_policy
        self.max_upload_bytes = max_upload_bytes
        self.chunk_size = chunk_size

    @classmethod
    def from_settings(cls, store: ProgramStore, settings: Settings) -> ContentAddressingEngine:
        """Build an engine configured from application settings."""
        return cls(
            store,
            hash_options=HashOptions(
                bootloader_version=settings.BOOTLOADER_VERSION,
                entrypoint=settings.PROGRAM_ENTRYPOINT,
            ),
            duplicate_policy=settings.DUPLICATE_POLICY,
            max_upload_bytes=settings.MAX_UPLOAD_BYTES,
            chunk_size=settings.STREAM_CHUNK_SIZE,
        )

    def identify(self, payload: bytes) -> Identification:
        """Classify and hash a payload without storing it."""
        return identify(payload, self.hash_options)

    async def upload(self, payload: bytes) -> UploadResult:
        """Store a payload under its content hash.

        Raises:
            PayloadTooLargeError: Payload exceeds max_upload_bytes.
            ClassificationError: Format metadata is malformed.
            UnsupportedFormatError: Unknown compiler major version.
            ParseError: Payload does not match its format.
            DuplicateContentError: Hash exists and the policy is REJECT.
            StorageError: The insert failed.
        """
        if self.max_upload_bytes is not None and len(payload) > self.max_upload_bytes:
            raise PayloadTooLargeError(
                "Upload exceeds size limit",
                {"size": len(payload), "limit": self.max_upload_bytes},
            )

        identification = await asyncio.to_thread(self.identify, payload)
        logger.debug(
            "Identified program",
            format=identification.format_version.label,
            content_hash=identification.content_hash,
        )

        created = await self.store.insert(
            identification.content_hash, payload, identification.format_version
        )
        if not created and self.duplicate_policy is DuplicatePolicy.REJECT:
            raise DuplicateContentError(identification.content_hash)

        logger.info(
            "Stored program" if created else "Program already stored",
            content_hash=identification.content_hash,
            format=identification.format_version.label,
            size=len(payload),
        )
        return UploadResult(
            content_hash=identification.content_hash,
            format_version=identification.format_version,
            size=len(payload),
            created=created,
        )

    async def describe(self, content_hash: str) -> Artifact:
        """Resolve a caller-supplied hash to stored artifact metadata.

        Raises:
            NotFoundError: Nothing is stored under the hash.
            StorageError: The lookup failed.
        """
        canonical = normalize_hash(content_hash)
        artifact = await self.store.lookup(canonical)
        if artifact is None:
            raise NotFoundError("Program not found", {"program_hash": canonical})
        return artifact

    async def open(self, content_hash: str) -> ProgramStream:
        """Resolve a hash to a stream of its stored bytes.

        The lookup happens here, so NotFoundError is raised before any byte is
        produced.
        """
        artifact = await self.describe(content_hash)
        logger.debug("Opening program stream", **artifact.to_dict())
        return ProgramStream(
            content_hash=artifact.content_hash,
            format_version=artifact.format_version,
            size=artifact.size,
            chunks=self.store.iter_payload(artifact, self.chunk_size),
        )

    async def fetch_bytes(self, content_hash: str) -> bytes:
        """Return the full stored payload for a hash."""
        stream = await self.open(content_hash)
        return await stream.read()
