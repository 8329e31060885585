from contextlib import asynccontextmanager
from pathlib import Path
from string import Template
from urllib.parse import quote

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from starlette.datastructures import UploadFile

import config
from app.services.errors import (
    FileTooLargeError,
    InvalidFileIdError,
    MalformedUploadError,
    StorageFaultError,
)
from app.services.storage_manager import StorageManager
from app.services.transfer_service import TransferService
from logger_config import setup_logger

# Logger setup
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create and initialize storage, then wire the transfer service on top of it
    storage_manager = StorageManager(Path(config.UPLOAD_DIR), Path(config.TEMP_DIR))
    await storage_manager.initialize()
    app.state.transfer_service = TransferService(storage_manager)
    yield


# Create FastAPI app with lifespan
app = FastAPI(title="File Transfer Service", lifespan=lifespan)


HOME_PAGE = Template("""<!DOCTYPE html>
<html>
<head>
    <title>File Transfer Service</title>
    <style>
        body { font-family: Arial, sans-serif; max-width: 800px; margin: 50px auto; padding: 20px; }
        h1 { color: #333; }
        .section { margin: 20px 0; padding: 20px; background: #f5f5f5; border-radius: 5px; }
        pre { background: #2d2d2d; color: #f8f8f8; padding: 15px; border-radius: 5px; overflow-x: auto; }
    </style>
</head>
<body>
    <h1>File Transfer Service</h1>
    <p>Upload a file, get a short ID, share the link.</p>

    <div class="section">
        <h2>Upload a File</h2>
        <p>Using curl:</p>
        <pre>curl -F "file=@yourfile.pdf" http://$host/upload</pre>

        <p>Or use the form below:</p>
        <form action="/upload" method="post" enctype="multipart/form-data">
            <input type="file" name="file" required>
            <button type="submit">Upload</button>
        </form>
    </div>

    <div class="section">
        <h2>Download a File</h2>
        <p>Using curl:</p>
        <pre>curl http://$host/files/{file-id} -o downloaded-file</pre>

        <p>Or open in browser:</p>
        <pre>http://$host/files/{file-id}</pre>
    </div>

    <div class="section">
        <h2>Features</h2>
        <ul>
            <li>Max file size: $max_size_mb MB</li>
            <li>Files stored locally</li>
            <li>Unique IDs for each upload</li>
            <li>Simple REST API</li>
        </ul>
    </div>
</body>
</html>""")


def get_host(request: Request) -> str:
    return request.headers.get("host") or f"localhost:{config.PORT}"


def content_disposition(filename: str) -> str:
    """Build an attachment Content-Disposition header for filename."""
    quoted = quote(filename)
    # Non-ASCII or otherwise unsafe names go through RFC 5987 encoding
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


@app.middleware("http")
async def limit_upload_size(request: Request, call_next):
    """Reject uploads whose declared size is over the limit before reading the body."""
    if request.method == "POST" and request.url.path == "/upload":
        content_length = request.headers.get("content-length")
        if content_length is not None:
            if not content_length.isdigit():
                return JSONResponse(status_code=400, content={"detail": "Invalid Content-Length header"})
            if int(content_length) > config.MAX_FILE_SIZE + config.MULTIPART_OVERHEAD:
                logger.info(f"Rejected upload with Content-Length {content_length}")
                return JSONResponse(status_code=413, content={"detail": "File too large or invalid form"})
    return await call_next(request)


@app.get("/", response_class=HTMLResponse)
async def home(request: Request):
    return HOME_PAGE.substitute(
        host=get_host(request),
        max_size_mb=config.MAX_FILE_SIZE // (1024 * 1024),
    )


@app.post("/upload")
async def upload_file(request: Request):
    """Store the multipart ``file`` field under a fresh ID."""
    async with request.form() as form:
        file = form.get("file")
        # A plain text field named "file" carries no file payload either
        if not isinstance(file, UploadFile):
            raise HTTPException(status_code=400, detail="Failed to read file: no file in form")
        return await store_upload(request, file)


async def store_upload(request: Request, file: UploadFile) -> dict:
    transfer_service = request.app.state.transfer_service

    # Get the actual size of the spooled upload
    file.file.seek(0, 2)
    file_size = file.file.tell()
    file.file.seek(0)
    logger.debug(f"Receiving upload {file.filename!r}: {file_size} bytes")

    if file_size > config.MAX_FILE_SIZE:
        raise HTTPException(status_code=413, detail="File too large or invalid form")

    try:
        stored = await transfer_service.upload(file, file.filename, config.MAX_FILE_SIZE)
    except MalformedUploadError as e:
        raise HTTPException(status_code=400, detail=f"Failed to read file: {e}")
    except FileTooLargeError:
        raise HTTPException(status_code=413, detail="File too large or invalid form")
    except StorageFaultError:
        raise HTTPException(status_code=500, detail="Failed to save file")

    logger.info(f"File uploaded: {stored.original_name} ({stored.size / (1024 * 1024):.2f} MB)")

    return {
        "id": stored.file_id,
        "filename": stored.original_name,
        "size": stored.size,
        "url": str(request.url_for("download_file", file_id=stored.file_id)),
    }


@app.get("/files/")
async def download_without_id():
    raise HTTPException(status_code=400, detail="File ID required")


@app.get("/files/{file_id}")
async def download_file(file_id: str, request: Request):
    """Stream a stored file back under its original name."""
    transfer_service = request.app.state.transfer_service

    try:
        stored = await transfer_service.download(file_id)
    except InvalidFileIdError:
        raise HTTPException(status_code=400, detail="Invalid file ID format")
    except StorageFaultError:
        raise HTTPException(status_code=500, detail="Failed to open file")

    if stored is None:
        logger.info(f"File not found: {file_id}")
        raise HTTPException(status_code=404, detail="File not found")

    headers = {
        "Content-Disposition": content_disposition(stored.original_name or stored.file_id),
        "Content-Length": str(stored.size),
    }
    logger.info(f"File downloaded: {stored.path.name}")

    return StreamingResponse(
        transfer_service.storage_manager.stream(stored),
        media_type="application/octet-stream",
        headers=headers,
    )


@app.get("/health")
async def health():
    return {"status": "ok", "service": "file-transfer"}


if __name__ == "__main__":
    logger.info(f"Server starting on port {config.PORT}...")
    logger.info(f"Upload directory: {config.UPLOAD_DIR}")
    logger.info(f"Max file size: {config.MAX_FILE_SIZE // (1024 * 1024)} MB")
    uvicorn.run(app, host=config.HOST, port=config.PORT)
