# relayq/tasks/siakad.py
"""Fetch a student's profile picture from SIAKAD once and keep a local copy."""

from __future__ import annotations

import asyncio
import datetime as dt
import mimetypes
from pathlib import Path
from typing import Callable, Optional

import httpx

from relayq.collaborators.store import Store
from relayq.core.errors import RecordNotFound
from relayq.core.logging import get_logger
from relayq.core.models.config import SiakadSettings
from relayq.core.models.domain import SiakadProfilePicture, utcnow

logger = get_logger('tasks.siakad')


class ScrapingError(RuntimeError):
    pass


def image_mimetype(content_type: Optional[str]) -> str:
    """Bare mimetype of an image response; raises ScrapingError for anything else."""
    mimetype = (content_type or '').split(';', 1)[0].strip().lower()
    if not mimetype.startswith('image/'):
        raise ScrapingError(f'received forbidden content type: {content_type!r}')
    return mimetype


async def scrape_profile_picture(
    store: Store,
    settings: SiakadSettings,
    npm: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    clock: Callable[[], dt.datetime] = utcnow,
) -> Optional[SiakadProfilePicture]:
    """
    Download and store the picture for `npm`.

    Returns the stored record, the existing one when it was scraped before, or
    None when SIAKAD has no picture (404).
    """
    # The npm becomes a file name under storage_dir
    if not (npm.isascii() and npm.isdigit()):
        raise ScrapingError(f'npm must be all digits, got {npm!r}')

    try:
        existing = await store.find_profile_picture(npm)
    except RecordNotFound:
        pass
    else:
        logger.info(f'Profile picture for {npm} already scraped')
        return existing

    link = f'{settings.base_url.rstrip("/")}/{npm}'
    if client is None:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(settings.request_timeout_seconds)
        ) as owned:
            response = await owned.get(link)
    else:
        response = await client.get(link)

    if response.status_code == 404:
        logger.info(f'Got 404 from {link}, considering success')
        return None
    if response.status_code != 200:
        raise ScrapingError(f'got {response.status_code} response from {link}')

    mimetype = image_mimetype(response.headers.get('content-type'))
    filename = npm + (mimetypes.guess_extension(mimetype) or '')
    path = Path(settings.storage_dir) / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    await asyncio.to_thread(path.write_bytes, response.content)

    picture = SiakadProfilePicture(
        npm=npm, image_path=str(path), mimetype=mimetype, created_at=clock()
    )
    await store.create_profile_picture(picture)
    logger.info(f'Saved profile picture for {npm} ({len(response.content)} bytes)')
    return picture
