from contextlib import asynccontextmanager
from pathlib import Path
from urllib.parse import quote

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, StreamingResponse

from file_vault import config
from file_vault.app.exceptions import NotFound, VaultError
from file_vault.app.services.storage_manager import StorageManager
from file_vault.app.services.size_codec import format_size
from file_vault.logger_config import setup_logger

# Logger setup
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.storage_manager = StorageManager(Path(config.BASE_DIR))
    await app.state.storage_manager.initialize()
    yield


app = FastAPI(title="File Vault", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type"],
)


@app.exception_handler(VaultError)
async def vault_error_handler(request: Request, exc: VaultError):
    message = f"{exc.code}: {exc.message} path={request.url.path}"
    if exc.status_code >= 500:
        logger.error(message)
    else:
        logger.warning(message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code},
    )


def parse_file_id(raw_id: str) -> int:
    """Ids are integers; anything else cannot name a stored file."""
    try:
        return int(raw_id)
    except ValueError:
        raise NotFound("File not found in database") from None


def content_disposition(filename: str) -> str:
    """Attachment header carrying the display name of a file."""
    if filename.isascii():
        escaped = filename.replace("\\", "\\\\").replace('"', '\\"')
        return f'attachment; filename="{escaped}"'
    fallback = filename.encode("ascii", "replace").decode("ascii").replace('"', "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


@app.get("/api/test")
async def api_test():
    return {"message": "API is working"}


@app.get("/api/files")
async def list_files(request: Request):
    storage_manager = request.app.state.storage_manager
    return await storage_manager.list_files()


@app.get("/api/storage")
async def storage_info(request: Request):
    storage_manager = request.app.state.storage_manager
    return await storage_manager.storage_info()


@app.post("/api/upload")
async def upload_file(request: Request):
    """Accept a multipart/form-data body carrying a single file."""
    storage_manager = request.app.state.storage_manager
    content_type = request.headers.get("content-type", "")
    body = await request.body()
    logger.info(f"Receiving upload request ({len(body)} bytes)")

    record = await storage_manager.upload(body, content_type)
    return {"message": "File uploaded successfully", "file": record}


@app.get("/api/download/{file_id}")
async def download_file(file_id: str, request: Request):
    storage_manager = request.app.state.storage_manager
    logger.info(f"Receiving download request for file_id: {file_id}")

    download = await storage_manager.download(parse_file_id(file_id))
    headers = {
        "Content-Length": str(download.length),
        "Content-Disposition": content_disposition(download.record.name),
    }
    return StreamingResponse(
        download.chunks,
        media_type="application/octet-stream",
        headers=headers,
    )


@app.delete("/api/files/{file_id}")
async def delete_file(file_id: str, request: Request):
    storage_manager = request.app.state.storage_manager
    logger.info(f"Receiving delete request for file_id: {file_id}")

    await storage_manager.delete(parse_file_id(file_id))
    return {"message": "File deleted successfully"}


@app.api_route("/api/{rest:path}", methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
async def unknown_api_route(rest: str):
    return JSONResponse(
        status_code=404,
        content={"error": "API endpoint not found", "code": NotFound.code},
    )


@app.get("/{asset_path:path}")
async def serve_static(asset_path: str):
    """Serve UI assets from the public directory; ``/`` maps to index.html."""
    public_dir = (Path(config.BASE_DIR) / config.PUBLIC_DIR).resolve()
    target = (public_dir / (asset_path or "index.html")).resolve()

    if public_dir not in target.parents or not target.is_file():
        return HTMLResponse("<h1>404 Not Found</h1><p>File not found.</p>", status_code=404)
    return FileResponse(target)


if __name__ == "__main__":
    logger.info("Starting File Vault server...")
    logger.info(f"Base directory: {Path(config.BASE_DIR).resolve()}")
    logger.info(f"Storage capacity: {format_size(config.CAPACITY_BYTES)}")
    uvicorn.run(app, host=config.HOST, port=config.PORT)
