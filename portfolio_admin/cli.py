"""
Command-line interface for the portfolio admin backend.
"""
import argparse
import getpass
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

from .auth import hash_password
from .client import AdminClient, UploadRequestFailed, UploadScheduler
from .config import Settings
from .models import FileProgress, UploadStatus
from .scanner import FileScanner

logger = logging.getLogger(__name__)

console = Console()

DEFAULT_URL = "http://127.0.0.1:6180"


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application.

    Args:
        verbose: Whether to enable debug logging
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def load_config(config_file: Optional[Path] = None) -> dict:
    """Load client defaults (url, username) from a JSON file.

    Args:
        config_file: Path to config file

    Returns:
        Dictionary of configuration values
    """
    if not config_file:
        return {}

    try:
        with open(config_file) as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Error loading config file: {e}")
        return {}


def create_client(args: argparse.Namespace) -> AdminClient:
    """Create a logged-in admin client.

    Args:
        args: Command line arguments

    Returns:
        Authenticated AdminClient
    """
    config = load_config(args.config)
    url = args.url or config.get('url', DEFAULT_URL)
    username = args.username or config.get('username', 'admin')
    password = os.getenv('PORTFOLIO_ADMIN_PASSWORD') or getpass.getpass(f"Password for {username}: ")

    client = AdminClient(url)
    client.login(username, password)
    return client


def handle_serve(args: argparse.Namespace) -> None:
    """Handle the serve command."""
    import uvicorn

    from .api import create_app

    settings = Settings()
    host = args.host or settings.HOST
    port = args.port or settings.PORT
    logger.info(f"Admin server starting on {host}:{port} "
                f"(data_dir={settings.DATA_DIR}, upload_dir={settings.UPLOAD_DIR})")
    uvicorn.run(create_app(settings), host=host, port=port,
                log_level=settings.LOG_LEVEL.lower())


def handle_upload(args: argparse.Namespace) -> None:
    """Handle the upload command.

    Args:
        args: Command line arguments
    """
    paths = FileScanner().collect([Path(p) for p in args.paths], args.pattern)
    if not paths:
        console.print("[yellow]No image files to upload[/yellow]")
        return

    client = create_client(args)

    columns = (
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("{task.fields[status]}"),
    )
    with Progress(*columns, console=console) as progress:
        # Indexed like the selection, which is how the scheduler keys its states
        tasks = [
            progress.add_task(str(path), total=100, status="queued")
            for path in paths
        ]

        def show(update: FileProgress) -> None:
            if update.key is None or not 0 <= update.key < len(tasks):
                return
            task = tasks[update.key]
            status = update.status.value
            if update.status is UploadStatus.ERROR:
                status = f"[red]error: {update.error}[/red]"
            elif update.status is UploadStatus.COMPLETE:
                status = "[green]complete[/green]"
            progress.update(task, completed=update.progress or 0, status=status)

        scheduler = UploadScheduler(client, concurrency=args.concurrency, on_progress=show)
        outcome = scheduler.upload_files(args.album_id, paths)

    console.print(f"Uploaded {len(outcome.uploaded)} of {len(paths)} files")
    for error in outcome.errors:
        console.print(f"[red]✗[/red] {error}")
    if outcome.errors:
        sys.exit(1)


def handle_stats(args: argparse.Namespace) -> None:
    """Handle the stats command."""
    client = create_client(args)
    stats = client.storage_stats()
    console.print_json(data=stats)
    if stats.get("warning"):
        console.print(f"[yellow]{stats['warning']['message']}[/yellow]")


def handle_hash_password(args: argparse.Namespace) -> None:
    """Handle the hash-password command."""
    password = args.password or getpass.getpass("Password: ")
    if not password:
        logger.error("Password cannot be empty")
        sys.exit(1)
    print(hash_password(password))


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(description="Photography portfolio admin")
    parser.add_argument('-v', '--verbose', action='store_true',
                        help="Enable verbose logging")
    parser.add_argument('-c', '--config', type=Path,
                        help="Path to client config file")

    subparsers = parser.add_subparsers(dest='command', required=True)

    serve_parser = subparsers.add_parser('serve', help="Run the admin API server")
    serve_parser.add_argument('--host', type=str, help="Address to bind")
    serve_parser.add_argument('--port', type=int, help="Port to listen on")

    def add_client_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument('-u', '--url', type=str, help=f"Server URL (default {DEFAULT_URL})")
        sub.add_argument('--username', type=str, help="Admin username")

    upload_parser = subparsers.add_parser('upload', help="Upload photos to an album")
    upload_parser.add_argument('album_id', type=str, help="Target album ID")
    upload_parser.add_argument('paths', nargs='+', help="Image files or folders")
    upload_parser.add_argument('-p', '--pattern', type=str, default="*",
                               help="File pattern to match inside folders")
    upload_parser.add_argument('-n', '--concurrency', type=int, default=3,
                               help="Files uploaded at the same time")
    add_client_args(upload_parser)

    stats_parser = subparsers.add_parser('stats', help="Show storage statistics")
    add_client_args(stats_parser)

    hash_parser = subparsers.add_parser('hash-password',
                                        help="Print a bcrypt hash for admin_config.json")
    hash_parser.add_argument('password', nargs='?', help="Password to hash")

    args = parser.parse_args()
    setup_logging(args.verbose)

    handlers = {
        'serve': handle_serve,
        'upload': handle_upload,
        'stats': handle_stats,
        'hash-password': handle_hash_password,
    }
    try:
        handlers[args.command](args)
    except (UploadRequestFailed, ValueError) as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
