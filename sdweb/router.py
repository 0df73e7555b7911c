"""
HTTP method dispatch for sdweb

One catch-all route below the URL prefix accepts GET (and HEAD), PUT, POST and DELETE
and maps each request onto a filesystem operation below the root path.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Optional
from urllib.parse import unquote

from fastapi import APIRouter, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.datastructures import UploadFile
from starlette.requests import ClientDisconnect

from .errors import (
    BackendError,
    CapabilityDisabled,
    ClientError,
    FileServerError,
    NotFoundError,
    PayloadTooLarge,
)
from .listing import listing_to_dict, render_listing, url_for_path
from .metrics import MetricsManager, TransferCounter
from .models import ApiResponse, RequestContext, ResponseCode, WebConfig
from .paths import SEPARATOR, PathResolver, file_name, join, normalize_path, parent_path
from .storage import LocalStorage
from .transfer import open_download, receive_upload
from .utils import content_disposition, get_mime_type, validate_filename

logger = logging.getLogger(__name__)

NEW_NAME_HEADER = "X-New-Name"
FILE_NAME_HEADER = "X-File-Name"

METHODS = ["GET", "HEAD", "PUT", "POST", "DELETE"]


def _http_exception(exc: FileServerError) -> HTTPException:
    """Convert a FileServerError into a HTTPException."""

    status_code = exc.status_code
    if status_code == 404:
        code = ResponseCode.NOT_FOUND.value
    elif status_code == 403:
        code = ResponseCode.FORBIDDEN.value
    elif status_code == 413:
        code = ResponseCode.PAYLOAD_TOO_LARGE.value
    elif status_code >= 500:
        code = ResponseCode.INTERNAL_ERROR.value
    else:
        code = ResponseCode.ERROR.value

    return HTTPException(
        status_code=status_code,
        detail=ApiResponse(
            code=code,
            msg=str(exc),
            data=None,
        ).to_dict(),
    )


async def _iter_upload(upload: UploadFile, chunk_size: int) -> AsyncIterator[bytes]:
    while True:
        chunk = await upload.read(chunk_size)
        if not chunk:
            break
        yield chunk


async def _counted_upload(chunks: AsyncIterator[bytes], counter: TransferCounter) -> AsyncIterator[bytes]:
    async for chunk in chunks:
        counter.add_bytes(len(chunk))
        yield chunk


class FileRouter:
    """Maps requests below ``url_prefix`` onto storage operations below ``root_path``"""

    def __init__(
        self,
        config: WebConfig,
        storage: Optional[LocalStorage] = None,
        metrics: Optional[MetricsManager] = None,
    ):
        self.config = config
        self.storage = storage or LocalStorage()
        self.metrics = metrics or MetricsManager()
        self.resolver = PathResolver(config.root_path, config.url_prefix, config.strict_prefix)

        self.router = APIRouter(tags=["files"])
        prefix = config.url_prefix
        self.router.add_api_route(
            f"{prefix}/{{path:path}}", self.dispatch, methods=METHODS, include_in_schema=False
        )
        if prefix:
            self.router.add_api_route(prefix, self.dispatch, methods=METHODS, include_in_schema=False)

    def register(self, app: FastAPI):
        """Attach the file routes to an application"""
        app.include_router(self.router)
        logger.info(f"File routes registered under {self.config.url_prefix or '/'}")

    async def dispatch(self, request: Request) -> Response:
        # scope["path"] is already percent-decoded and free of the query string
        ctx = RequestContext(url=request.scope["path"], method=request.method)
        handlers = {
            "GET": self.handle_get,
            "HEAD": self.handle_get,
            "PUT": self.handle_put,
            "POST": self.handle_post,
            "DELETE": self.handle_delete,
        }

        try:
            return await handlers[request.method](request, ctx)

        except ClientDisconnect as e:
            logger.info(f"Client disconnected during {ctx.method} {ctx.url}")
            raise _http_exception(ClientError("Request body incomplete")) from e

        except FileServerError as e:
            if e.status_code >= 500:
                self.metrics.increment_errors()
                logger.error(f"{ctx.method} {ctx.url} failed: {e}")
            else:
                logger.info(f"{ctx.method} {ctx.url} rejected ({e.status_code}): {e}")
            raise _http_exception(e) from e

        except OSError as e:
            self.metrics.increment_errors()
            logger.error(f"{ctx.method} {ctx.url} storage failure on {ctx.absolute_path}: {e}")
            raise _http_exception(BackendError("Storage failure")) from e

    def _resolve(self, ctx: RequestContext):
        ctx.relative_path = self.resolver.resolve(ctx.url)
        ctx.absolute_path = self.resolver.to_absolute(ctx.relative_path)

    async def _require_existing(self, ctx: RequestContext):
        if not await self.storage.exists(ctx.absolute_path):
            raise NotFoundError(f"Not found: {ctx.relative_path}")

    # GET

    async def handle_get(self, request: Request, ctx: RequestContext) -> Response:
        """Directory listing or file download"""
        if not self.config.download_enabled:
            raise CapabilityDisabled("Downloads are disabled")

        self._resolve(ctx)
        await self._require_existing(ctx)

        if await self.storage.is_directory(ctx.absolute_path):
            return await self._listing(request, ctx)
        if request.method == "HEAD":
            return await self._head(ctx)
        return await self._download(ctx)

    def _download_headers(self, filename: str) -> dict:
        return {
            "Content-Disposition": content_disposition(filename),
            "X-Content-Type-Options": "nosniff",
        }

    async def _head(self, ctx: RequestContext) -> Response:
        # Headers only, the file is never opened
        try:
            size = await self.storage.file_size(ctx.absolute_path)
        except OSError as e:
            raise NotFoundError(f"Not found: {ctx.relative_path}") from e

        headers = self._download_headers(file_name(ctx.absolute_path))
        headers["Content-Length"] = str(size)
        return Response(headers=headers, media_type=get_mime_type(ctx.absolute_path))

    async def _listing(self, request: Request, ctx: RequestContext) -> Response:
        display_path = self.resolver.to_url(ctx.relative_path)
        entries = await self.storage.list_directory(ctx.absolute_path)

        if "application/json" in request.headers.get("accept", ""):
            data = await listing_to_dict(entries, display_path)
            return JSONResponse(ApiResponse(data=data).to_dict())

        return StreamingResponse(
            render_listing(entries, display_path, self._parent_href(ctx.relative_path)),
            media_type="text/html",
        )

    def _parent_href(self, relative: str) -> Optional[str]:
        stripped = relative.rstrip(SEPARATOR)
        if not stripped:
            return None
        return url_for_path(self.resolver.to_url(parent_path(stripped)))

    async def _download(self, ctx: RequestContext) -> Response:
        download = await open_download(self.storage, ctx.absolute_path, self.config.chunk_size)
        headers = self._download_headers(download.filename)

        async def counted_generator():
            with self.metrics.download_context() as counter:
                try:
                    async for chunk in download.chunks:
                        counter.add_bytes(len(chunk))
                        yield chunk
                finally:
                    await download.chunks.aclose()

        return StreamingResponse(
            counted_generator(),
            media_type=download.mime_type,
            headers=headers,
        )

    # DELETE

    async def handle_delete(self, request: Request, ctx: RequestContext) -> Response:
        """Delete a single file; directories are refused"""
        if not self.config.deletion_enabled:
            raise CapabilityDisabled("Deletion is disabled")

        self._resolve(ctx)
        await self._require_existing(ctx)

        if await self.storage.is_directory(ctx.absolute_path):
            raise ClientError(f"Cannot delete a directory: {ctx.relative_path}")

        await self.storage.delete_file(ctx.absolute_path)
        return Response(status_code=204)

    # PUT

    async def handle_put(self, request: Request, ctx: RequestContext) -> Response:
        """Create a directory (trailing separator) or rename an entry"""
        self._resolve(ctx)

        if ctx.relative_path.endswith(SEPARATOR):
            return await self._make_directory(ctx)
        return await self._rename(request, ctx)

    async def _make_directory(self, ctx: RequestContext) -> Response:
        if await self.storage.exists(ctx.absolute_path):
            raise ClientError(f"Already exists: {ctx.relative_path}")

        await self.storage.create_directory(ctx.absolute_path)
        return JSONResponse(
            status_code=201,
            content=ApiResponse(
                msg="Directory created successfully",
                data={"path": ctx.relative_path},
            ).to_dict(),
        )

    async def _rename(self, request: Request, ctx: RequestContext) -> Response:
        new_name = unquote(request.headers.get(NEW_NAME_HEADER, "")).strip()
        if not new_name:
            raise ClientError(f"Missing {NEW_NAME_HEADER} header")
        if not validate_filename(new_name):
            raise ClientError(f"Invalid filename: {new_name}")

        await self._require_existing(ctx)

        new_relative = parent_path(ctx.relative_path) + new_name
        new_absolute = self.resolver.to_absolute(new_relative)

        if await self.storage.exists(new_absolute):
            raise ClientError(f"Destination already exists: {new_name}")

        await self.storage.rename_file(ctx.absolute_path, new_absolute)
        return JSONResponse(
            ApiResponse(
                msg="Renamed successfully",
                data={"oldPath": ctx.relative_path, "path": new_relative},
            ).to_dict()
        )

    # POST

    async def handle_post(self, request: Request, ctx: RequestContext) -> Response:
        """Upload a file into the addressed directory"""
        if not self.config.upload_enabled:
            raise CapabilityDisabled("Uploads are disabled")

        self._resolve(ctx)
        await self._require_existing(ctx)

        if not await self.storage.is_directory(ctx.absolute_path):
            raise ClientError(f"Upload target is not a directory: {ctx.relative_path}")

        content_type = request.headers.get("content-type", "")
        if content_type.startswith("multipart/form-data"):
            return await self._upload_multipart(request, ctx)
        return await self._upload_raw(request, ctx)

    async def _upload_raw(self, request: Request, ctx: RequestContext) -> Response:
        filename = unquote(request.headers.get(FILE_NAME_HEADER, "")).strip()
        if not filename:
            raise ClientError(f"Missing {FILE_NAME_HEADER} header")

        max_size = self.config.max_upload_size
        content_length = request.headers.get("content-length")
        if max_size is not None and content_length and content_length.isdigit():
            if int(content_length) > max_size:
                raise PayloadTooLarge(f"File too large (max: {max_size} bytes)")

        return await self._store_upload(ctx, filename, request.stream())

    async def _upload_multipart(self, request: Request, ctx: RequestContext) -> Response:
        form = await request.form()
        try:
            upload = form.get("file")
            if not isinstance(upload, UploadFile):
                upload = next(
                    (value for _, value in form.multi_items() if isinstance(value, UploadFile)),
                    None,
                )
            if upload is None:
                raise ClientError("Missing file part in multipart body")

            # Some clients send a full client-side path as the part filename
            filename = file_name(normalize_path(upload.filename or "")).strip()
            if not filename:
                raise ClientError("Missing filename in multipart body")

            max_size = self.config.max_upload_size
            if max_size is not None and upload.size is not None and upload.size > max_size:
                raise PayloadTooLarge(f"File too large (max: {max_size} bytes)")

            return await self._store_upload(
                ctx, filename, _iter_upload(upload, self.config.chunk_size)
            )
        finally:
            await form.close()

    async def _store_upload(
        self,
        ctx: RequestContext,
        filename: str,
        chunks: AsyncIterator[bytes],
    ) -> Response:
        if not validate_filename(filename):
            raise ClientError(f"Invalid filename: {filename}")

        target_relative = join(ctx.relative_path, filename)
        target_absolute = self.resolver.to_absolute(target_relative)

        with self.metrics.upload_context() as counter:
            size = await receive_upload(
                self.storage,
                target_absolute,
                _counted_upload(chunks, counter),
                chunk_size=self.config.chunk_size,
                max_size=self.config.max_upload_size,
            )

        return JSONResponse(
            status_code=201,
            content=ApiResponse(
                msg="File uploaded successfully",
                data={"filename": filename, "size": size, "path": target_relative},
            ).to_dict(),
        )
