"""Error types for XML expense ingestion and export."""

from __future__ import annotations


class EgresosError(Exception):
    """Base class for every error raised by the accounting core."""


class ParseError(EgresosError):
    """The document is not well-formed XML or has no root element."""


class StoreUnavailable(EgresosError):
    """The local XML store could not be opened or an operation on it failed."""


class ExportError(EgresosError):
    """An export precondition failed or the output could not be produced."""


class NothingToExport(ExportError):
    def __init__(self):
        super().__init__("No hay XML para exportar")


class MissingCategory(ExportError):
    def __init__(self, count: int):
        self.count = count
        super().__init__(
            f"Faltan tipos de egreso en {count} XML. Asigna el tipo antes de exportar."
        )


class MultipleReceivers(ExportError):
    def __init__(self, count: int):
        self.count = count
        super().__init__(
            f"No se puede exportar con {count} receptores cargados. "
            "Deja solo un receptor para exportar."
        )


class ExportRenderError(ExportError):
    """The sink failed while writing the output file; the store was not touched."""
