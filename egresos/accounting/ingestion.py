"""Validate and store incoming XML documents, one file at a time."""

from __future__ import annotations

import codecs
import logging
import re
from pathlib import Path
from typing import Callable, Iterable

from egresos.accounting.errors import ParseError
from egresos.accounting.invoice_models import IngestResult, IngestStatus, StoredInvoice
from egresos.accounting.invoice_parser import is_likely_xml, parse_invoice_xml
from egresos.accounting.storage import XmlStore, now_millis

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

DECLARED_ENCODING = re.compile(rb"^\s*<\?xml[^>]*encoding=[\"']([A-Za-z0-9._-]+)[\"']")


def decode_xml_bytes(data: bytes) -> str:
    """Decode with the BOM or the encoding named in the XML declaration, UTF-8 otherwise."""
    if data.startswith(codecs.BOM_UTF8):
        return data.decode("utf-8-sig")
    m = DECLARED_ENCODING.match(data)
    encoding = m.group(1).decode("ascii") if m else "utf-8"
    return data.decode(encoding)


class IngestionPipeline:
    def __init__(self, store: XmlStore, clock: Callable[[], int] = now_millis):
        self.store = store
        self.clock = clock

    async def ingest(self, file_name: str, raw_text: str) -> IngestResult:
        """Duplicate check -> parse for validation -> store. The store keeps only the raw text."""
        if await self.store.has(file_name):
            logger.warning(f"Duplicate XML skipped: {file_name}")
            return IngestResult(file_name, IngestStatus.DUPLICATE, f"{file_name} ya está cargado")

        try:
            parse_invoice_xml(raw_text)
        except ParseError as e:
            logger.warning(f"Invalid XML rejected: {file_name}: {e}")
            return IngestResult(file_name, IngestStatus.INVALID, str(e))

        await self.store.put(StoredInvoice(
            file_name=file_name,
            raw_text=raw_text,
            expense_category=None,
            created_at_millis=self.clock(),
        ))
        logger.info(f"XML added: {file_name}")
        return IngestResult(file_name, IngestStatus.ADDED)

    async def ingest_bytes(self, file_name: str, data: bytes, mime_type: str | None = None) -> IngestResult:
        if not is_likely_xml(file_name, mime_type):
            return IngestResult(file_name, IngestStatus.INVALID, "No es un archivo XML")
        try:
            text = decode_xml_bytes(data)
        except (UnicodeDecodeError, LookupError) as e:
            return IngestResult(file_name, IngestStatus.INVALID, f"No se pudo leer el texto del archivo: {e}")
        return await self.ingest(file_name, text)

    async def ingest_batch(
        self,
        files: Iterable[tuple[str, bytes]],
        progress: ProgressCallback | None = None,
    ) -> list[IngestResult]:
        """Ingest (file_name, content) pairs sequentially.

        A rejected file never stops the batch; ``progress(done, total)`` fires after each file.
        """
        files = list(files)
        total = len(files)
        results = []
        for done, (file_name, data) in enumerate(files, 1):
            results.append(await self.ingest_bytes(file_name, data))
            if progress:
                progress(done, total)

        added = sum(1 for r in results if r.status == IngestStatus.ADDED)
        logger.info(f"Batch: {added} added, {total - added} rejected or duplicate")
        return results

    async def ingest_paths(
        self,
        paths: Iterable[str | Path],
        progress: ProgressCallback | None = None,
    ) -> list[IngestResult]:
        paths = [Path(p) for p in paths]
        total = len(paths)
        results = []
        for done, path in enumerate(paths, 1):
            try:
                data = path.read_bytes()
            except OSError as e:
                logger.warning(f"Could not read {path}: {e}")
                results.append(IngestResult(path.name, IngestStatus.INVALID, f"No se pudo leer: {e}"))
            else:
                results.append(await self.ingest_bytes(path.name, data))
            if progress:
                progress(done, total)
        return results
