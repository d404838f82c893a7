"""
Generation pipeline - turns a paid request into a stored, cached artifact.

Stages run strictly in order for a single request:

    cache lookup -> provider call -> download -> transcode (optional)
    -> object upload -> cache insert

A failure in any stage before the upload aborts the request with nothing
written. The final cache insert is best-effort: the object is already
durable and servable, so an insert failure is logged and the artifact is
still returned (the next identical request may regenerate it).

Concurrent identical requests are not deduplicated; both may miss and both
generate. The later insert is the one subsequent lookups return.
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import httpx

from app.errors import DownloadError, ProviderError, StorageError, TranscodeError
from app.models import GeneratedMedia
from app.providers.media_types import content_type_for
from app.services.cache_store import CacheStore, prompt_hash
from app.services.object_store import ObjectStore
from app.services.route_registry import RouteDefinition

logger = logging.getLogger(__name__)


class PathLookupError(LookupError):
    """A dot-path did not resolve to a string in a JSON tree."""


def extract_value(tree: Any, dot_path: str) -> str:
    """
    Resolve a dot-separated path in a parsed JSON value.

    Numeric segments index lists, other segments key dicts:
    "images.0.url" or "video.url".

    Raises:
        PathLookupError: If a segment is missing or the leaf is not a string
    """
    current = tree
    for segment in dot_path.split("."):
        if segment.isdigit():
            index = int(segment)
            if not isinstance(current, list) or index >= len(current):
                raise PathLookupError(f"Array index {index} not found in path '{dot_path}'")
            current = current[index]
        else:
            if not isinstance(current, dict) or segment not in current:
                raise PathLookupError(f"Key '{segment}' not found in path '{dot_path}'")
            current = current[segment]

    if not isinstance(current, str):
        raise PathLookupError(f"Value at path '{dot_path}' is not a string")
    return current


def object_key(definition: RouteDefinition, content_hash: str) -> str:
    """Storage key: {path without leading slash}/{hash}.{ext}"""
    return f"{definition.path.lstrip('/')}/{content_hash}.{definition.output_extension}"


@dataclass
class ArtifactResult:
    url: str
    effective_prompt: str
    cached: bool
    media_type: str


class GenerationPipeline:
    """Cache-or-generate a single artifact for a route."""

    def __init__(
        self,
        settings,
        http_client: httpx.AsyncClient,
        cache_store: CacheStore,
        object_store: ObjectStore,
    ):
        self.settings = settings
        self.http_client = http_client
        self.cache_store = cache_store
        self.object_store = object_store

    async def generate(
        self,
        definition: RouteDefinition,
        raw_prompt: Optional[str],
        payment=None,
    ) -> ArtifactResult:
        """
        Return the cached artifact for this prompt, or generate and store a new one.

        Payment must already be settled; `payment` (a PaymentOutcome) only
        supplies the payer and transaction recorded with a new artifact.

        Raises:
            ProviderError, DownloadError, TranscodeError, StorageError
        """
        effective_prompt = raw_prompt or definition.default_prompt
        content_hash = prompt_hash(effective_prompt)
        tag = f"[{definition.path}]"

        try:
            record = await self.cache_store.lookup(definition.path, content_hash)
        except StorageError as e:
            logger.error(f"{tag} Cache lookup failed, generating anyway: {e}")
            record = None

        if record is not None:
            logger.info(f"{tag} Cache hit for prompt: {effective_prompt}")
            return ArtifactResult(
                url=record.s3_url,
                effective_prompt=effective_prompt,
                cached=True,
                media_type=definition.media_type,
            )

        logger.info(f"{tag} Generating for: {effective_prompt}")

        provider_response = await self._call_provider(definition, effective_prompt)
        try:
            result_url = extract_value(provider_response, definition.response_url_path)
        except PathLookupError as e:
            logger.error(f"{tag} No result URL in provider response: {e}. Response: {provider_response}")
            raise ProviderError(f"No result URL in provider response: {e}") from e

        data = await self._download(result_url)

        if definition.post_process is not None:
            data = await self._transcode(definition, data, content_hash)

        key = object_key(definition, content_hash)
        await self.object_store.put(key, data, content_type_for(definition.output_extension))
        url = self.object_store.public_url(key)
        logger.info(f"{tag} Uploaded to object store: {url}")

        record = GeneratedMedia(
            endpoint_path=definition.path,
            prompt=effective_prompt,
            prompt_hash=content_hash,
            s3_key=key,
            s3_url=url,
            media_type=definition.media_type,
            file_size_bytes=len(data),
            payer_address=getattr(payment, "payer", None),
            payment_tx=getattr(payment, "transaction", None),
        )
        try:
            await self.cache_store.insert(record)
        except StorageError as e:
            logger.error(f"{tag} Failed to insert media record: {e}")

        return ArtifactResult(
            url=url,
            effective_prompt=effective_prompt,
            cached=False,
            media_type=definition.media_type,
        )

    async def _call_provider(self, definition: RouteDefinition, prompt: str) -> Any:
        body = {**definition.request_params, "prompt": prompt}
        url = f"{self.settings.PROVIDER_BASE_URL.rstrip('/')}/{definition.model}"
        headers = {
            "Authorization": f"{self.settings.PROVIDER_AUTH_SCHEME} {self.settings.PROVIDER_API_KEY}",
        }

        try:
            response = await self.http_client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"[{definition.path}] Provider request failed: {e}")
            raise ProviderError(f"Provider request failed: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            logger.error(f"[{definition.path}] Provider error {response.status_code}: {response.text}")
            raise ProviderError(
                f"Provider error {response.status_code}: {response.text}",
                status=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Failed to parse provider response: {e}") from e

    async def _download(self, url: str) -> bytes:
        try:
            response = await self.http_client.get(url)
        except httpx.HTTPError as e:
            raise DownloadError(f"Failed to download {url}: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            raise DownloadError(f"Download failed with status {response.status_code}")
        return response.content

    async def _transcode(self, definition: RouteDefinition, data: bytes, content_hash: str) -> bytes:
        """Run the transcoder over scratch files named by content hash.

        Both scratch files are removed whether or not the tool succeeds.
        """
        step = definition.post_process
        scratch = Path(self.settings.SCRATCH_DIR)
        input_path = scratch / f"{content_hash}.{step.input_extension}"
        output_path = scratch / f"{content_hash}.{definition.output_extension}"

        cmd = [
            self.settings.TRANSCODER_BIN,
            "-i", str(input_path),
            *step.args,
            "-y", str(output_path),
        ]

        try:
            await asyncio.to_thread(scratch.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(input_path.write_bytes, data)

            try:
                proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise TranscodeError(
                    f"{self.settings.TRANSCODER_BIN} failed to execute (is it installed?): {e}"
                ) from e

            _, stderr = await proc.communicate()
            if proc.returncode != 0:
                diagnostics = stderr.decode(errors="replace") if stderr else ""
                logger.error(f"[{definition.path}] Transcode failed: {diagnostics}")
                raise TranscodeError(f"Transcode failed: {diagnostics}", stderr=diagnostics)

            try:
                return await asyncio.to_thread(output_path.read_bytes)
            except OSError as e:
                raise TranscodeError(f"Failed to read transcoder output: {e}") from e
        except OSError as e:
            raise TranscodeError(f"Failed to prepare scratch file: {e}") from e
        finally:
            for path in (input_path, output_path):
                try:
                    os.remove(path)
                except FileNotFoundError:
                    pass
                except OSError as e:
                    logger.warning(f"Failed to remove scratch file {path}: {e}")
