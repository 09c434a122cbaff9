"""
HTTP API for the portfolio admin backend.
"""
import logging
import time
import uuid
from dataclasses import asdict
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .albums import AlbumService
from .auth import SESSION_COOKIE, AdminAuth, Session, hash_password
from .backup import S3Backup
from .config import Settings
from .coordinator import UploadBatchCoordinator
from .disk_gate import collect_storage_report, read_filesystem_stats
from .exceptions import PortfolioError
from .models import FilesystemStats
from .schemas import (
    CreateAlbumRequest,
    ErrorResponse,
    LoginRequest,
    MainPortfolioAlbumRequest,
    ReorderPhotosRequest,
    SetCoverRequest,
    UpdateAlbumRequest,
)
from .site_config import SiteConfigService
from .store import JsonFileStore
from .transcoder import ImageTranscoder
from .worker_pool import TranscodeLimiter, UploadWorkerPool

logger = logging.getLogger(__name__)

ADMIN_CONFIG_FILE = "admin_config.json"

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Content-Security-Policy": "default-src 'self'",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def resolve_admin_credentials(settings: Settings, store: JsonFileStore) -> tuple:
    """Work out the admin username and password hash.

    A plain ADMIN_PASSWORD wins over ADMIN_PASSWORD_HASH, which wins over
    admin_config.json in the data directory.
    """
    admin_config = store.read_json(ADMIN_CONFIG_FILE, default={}) or {}
    username = settings.ADMIN_USERNAME or admin_config.get("username", "admin")

    if settings.ADMIN_PASSWORD:
        logger.info("Using ADMIN_PASSWORD from environment (dev mode)")
        return username, hash_password(settings.ADMIN_PASSWORD)
    if settings.ADMIN_PASSWORD_HASH:
        return username, settings.ADMIN_PASSWORD_HASH
    if admin_config.get("password_hash"):
        return admin_config.get("username", username), admin_config["password_hash"]

    raise RuntimeError(
        "Admin password not configured: set ADMIN_PASSWORD or ADMIN_PASSWORD_HASH, "
        f"or create {ADMIN_CONFIG_FILE} in the data directory"
    )


def _upload_size(upload: UploadFile) -> int:
    size = getattr(upload, "size", None)
    if size is not None:
        return size
    stream = upload.file
    stream.seek(0, 2)
    size = stream.tell()
    stream.seek(0)
    return size


def create_app(settings: Optional[Settings] = None,
               stats_provider: Optional[Callable[[], FilesystemStats]] = None,
               s3_client=None) -> FastAPI:
    """Build the API application and its services.

    Args:
        settings: Process configuration; read from the environment when omitted
        stats_provider: Source of filesystem snapshots for disk checks
        s3_client: Client used for variant backups when a bucket is configured
    """
    settings = settings or Settings()
    data_dir = Path(settings.DATA_DIR)
    upload_dir = Path(settings.UPLOAD_DIR)

    store = JsonFileStore(data_dir)
    albums = AlbumService(store)
    site_config = SiteConfigService(store)

    backup = None
    if settings.BACKUP_S3_BUCKET:
        backup = S3Backup(settings.BACKUP_S3_BUCKET, settings.BACKUP_S3_PREFIX,
                          s3_client=s3_client)
        logger.info(f"Backing up photo variants to s3://{settings.BACKUP_S3_BUCKET}")
    transcoder = ImageTranscoder(upload_dir, backup=backup)

    stats_provider = stats_provider or (lambda: read_filesystem_stats(upload_dir))
    limiter = TranscodeLimiter(settings.MAX_CONCURRENT_TRANSCODES)
    pool = UploadWorkerPool(
        limiter=limiter,
        max_workers=settings.MAX_CONCURRENT_TRANSCODES,
        job_timeout=settings.TRANSCODE_TIMEOUT_SECONDS,
    )
    coordinator = UploadBatchCoordinator(
        albums, site_config, transcoder, pool,
        stats_provider=stats_provider,
        max_files=settings.MAX_BATCH_FILES,
    )

    username, password_hash = resolve_admin_credentials(settings, store)
    auth = AdminAuth(username, password_hash,
                     session_ttl=timedelta(hours=settings.SESSION_TTL_HOURS))

    app = FastAPI(title="Portfolio Admin")
    app.state.settings = settings
    app.state.albums = albums
    app.state.site_config = site_config
    app.state.transcoder = transcoder
    app.state.coordinator = coordinator
    app.state.limiter = limiter
    app.state.auth = auth

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Accept", "Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=300,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        start = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        client = request.client.host if request.client else "-"
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} "
            f"{(time.perf_counter() - start) * 1000:.1f}ms "
            f"client={client[:10]} request_id={request_id}"
        )
        return response

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.exception_handler(PortfolioError)
    async def portfolio_error_handler(request: Request, exc: PortfolioError):
        return JSONResponse(ErrorResponse(error=exc.message).model_dump(),
                            status_code=exc.status_code)

    def require_admin(request: Request) -> Session:
        return auth.validate(request.cookies.get(SESSION_COOKIE))

    def remove_files(photos) -> None:
        # The records are already gone; leftover files only waste space
        for photo in photos:
            try:
                transcoder.delete(photo)
            except PortfolioError as e:
                logger.warning(f"Failed to delete files of photo {photo.id}: {e}")

    @app.get("/api/healthz")
    def healthz() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/admin/login")
    def login(body: LoginRequest, response: Response) -> Dict[str, Any]:
        session = auth.authenticate(body.username, body.password)
        response.set_cookie(
            SESSION_COOKIE,
            session.session_id,
            max_age=int(auth.session_ttl.total_seconds()),
            httponly=True,
            secure=settings.COOKIE_SECURE,
            samesite="lax",
        )
        return {"authenticated": True, "username": session.username}

    @app.post("/api/admin/logout", status_code=204)
    def logout(request: Request, response: Response) -> None:
        auth.invalidate(request.cookies.get(SESSION_COOKIE))
        response.delete_cookie(SESSION_COOKIE)

    @app.get("/api/admin/auth/check")
    def auth_check(session: Session = Depends(require_admin)) -> Dict[str, bool]:
        return {"authenticated": True}

    @app.get("/api/config")
    def get_config() -> Dict[str, Any]:
        return site_config.get()

    @app.put("/api/admin/config")
    def update_config(body: Dict[str, Any],
                      session: Session = Depends(require_admin)) -> Dict[str, Any]:
        return site_config.update(body)

    @app.put("/api/admin/config/main-portfolio-album", status_code=204)
    def set_main_portfolio_album(body: MainPortfolioAlbumRequest,
                                 session: Session = Depends(require_admin)) -> Response:
        albums.get_by_id(body.album_id)
        site_config.set_main_portfolio_album(body.album_id)
        return Response(status_code=204)

    @app.get("/api/admin/albums")
    def list_albums(session: Session = Depends(require_admin)) -> List[Dict[str, Any]]:
        return albums.get_all()

    @app.post("/api/admin/albums", status_code=201)
    def create_album(body: CreateAlbumRequest,
                     session: Session = Depends(require_admin)) -> Dict[str, Any]:
        fields = body.model_dump(exclude_none=True, exclude={"title", "slug"})
        return albums.create(body.title, slug=body.slug, **fields)

    @app.get("/api/admin/albums/{album_id}")
    def get_album(album_id: str, session: Session = Depends(require_admin)) -> Dict[str, Any]:
        return albums.get_by_id(album_id)

    @app.put("/api/admin/albums/{album_id}")
    def update_album(album_id: str, body: UpdateAlbumRequest,
                     session: Session = Depends(require_admin)) -> Dict[str, Any]:
        return albums.update(album_id, body.model_dump(exclude_unset=True))

    @app.delete("/api/admin/albums/{album_id}", status_code=204)
    def delete_album(album_id: str, session: Session = Depends(require_admin)) -> Response:
        remove_files(albums.delete(album_id))
        return Response(status_code=204)

    @app.delete("/api/admin/albums/{album_id}/photos", status_code=204)
    def delete_all_photos(album_id: str, session: Session = Depends(require_admin)) -> Response:
        remove_files(albums.clear_photos(album_id))
        return Response(status_code=204)

    @app.post("/api/admin/albums/{album_id}/set-cover", status_code=204)
    def set_cover(album_id: str, body: SetCoverRequest,
                  session: Session = Depends(require_admin)) -> Response:
        albums.set_cover_photo(album_id, body.photo_id)
        return Response(status_code=204)

    @app.post("/api/admin/albums/{album_id}/reorder-photos", status_code=204)
    def reorder_photos(album_id: str, body: ReorderPhotosRequest,
                       session: Session = Depends(require_admin)) -> Response:
        albums.reorder_photos(album_id, body.photo_ids)
        return Response(status_code=204)

    # Plain def: FastAPI runs it in its threadpool, so the blocking worker
    # pool never stalls the event loop
    @app.post("/api/admin/albums/{album_id}/photos/upload")
    def upload_photos(album_id: str,
                      photos: Optional[List[UploadFile]] = File(None),
                      session: Session = Depends(require_admin)) -> Dict[str, Any]:
        files = [(p.filename or "", p.file, _upload_size(p)) for p in photos or []]
        return coordinator.handle_upload(album_id, files).to_dict()

    @app.delete("/api/admin/albums/{album_id}/photos/{photo_id}", status_code=204)
    def delete_photo(album_id: str, photo_id: str,
                     session: Session = Depends(require_admin)) -> Response:
        photo = albums.delete_photo(album_id, photo_id)
        try:
            transcoder.delete(photo)
        except PortfolioError as e:
            logger.warning(f"Failed to delete files of photo {photo_id}: {e}")
        return Response(status_code=204)

    @app.get("/api/admin/storage/stats")
    def storage_stats(session: Session = Depends(require_admin)) -> Dict[str, Any]:
        report = collect_storage_report(upload_dir, site_config.storage_policy(),
                                        stats_provider())
        return asdict(report)

    app.mount("/uploads", StaticFiles(directory=str(upload_dir)), name="uploads")

    return app
