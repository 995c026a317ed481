"""Telegram handlers for loading electronic invoice XML, assigning expense types and exporting.

Upload one or more .xml documents, then:
  /xml                           status grouped by receiver
  /xml_tipos [texto]             search the expense type catalog
  /xml_tipo <archivo> <codigo|-> assign or clear an expense type
  /xml_ver <archivo>             show the detail of one XML
  /xml_borrar <archivo>          delete one XML
  /xml_borrar_receptor <cedula|-> delete every XML of one receiver
  /xml_limpiar                   delete everything
  /xml_exportar [excel|pdf] [faltantes]
"""

from __future__ import annotations

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import ContextTypes

import config
from egresos.accounting.aggregation import AggregationEngine, group_by_receiver
from egresos.accounting.categorizer import ExpenseCatalog
from egresos.accounting.errors import EgresosError, ExportError, ExportRenderError, MissingCategory, ParseError
from egresos.accounting.ingestion import IngestionPipeline
from egresos.accounting.invoice_detail import describe_invoice
from egresos.accounting.invoice_export import export_and_clear
from egresos.accounting.invoice_models import IngestStatus
from egresos.accounting.invoice_parser import is_likely_xml, parse_invoice_xml
from egresos.accounting.storage import XmlStore

logger = logging.getLogger(__name__)

MAX_LIST = 30


def is_authorized(user_id: int) -> bool:
    if not config.ALLOWED_USER_IDS:
        return True
    return user_id in config.ALLOWED_USER_IDS


def setup_xml_services(bot_data: dict, store: XmlStore, catalog: ExpenseCatalog):
    bot_data["xml_store"] = store
    bot_data["xml_catalog"] = catalog
    bot_data["xml_engine"] = AggregationEngine(catalog)
    bot_data["xml_pipeline"] = IngestionPipeline(store)


def _store(context) -> XmlStore:
    return context.bot_data["xml_store"]


def _catalog(context) -> ExpenseCatalog:
    return context.bot_data["xml_catalog"]


def _export_keyboard(allow_missing: bool) -> InlineKeyboardMarkup:
    suffix = ":faltantes" if allow_missing else ""
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("Excel (.xlsx)", callback_data=f"xml_export:excel{suffix}"),
        InlineKeyboardButton("PDF (.pdf)", callback_data=f"xml_export:pdf{suffix}"),
    ]])


# --- Upload ---


async def handle_xml_upload(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle an uploaded .xml document: duplicate check, validation, storage."""
    if not is_authorized(update.effective_user.id):
        await update.message.reply_text("Acceso no autorizado.")
        return

    document = update.message.document
    if not is_likely_xml(document.file_name or "", document.mime_type):
        return

    pipeline: IngestionPipeline = context.bot_data["xml_pipeline"]
    try:
        file = await context.bot.get_file(document.file_id)
        data = bytes(await file.download_as_bytearray())
        result = await pipeline.ingest_bytes(document.file_name, data, document.mime_type)
    except EgresosError as e:
        logger.error(f"Error loading XML {document.file_name}: {e}", exc_info=True)
        await update.message.reply_text(f"Error cargando XML: {e}")
        return

    if result.status == IngestStatus.ADDED:
        total = await _store(context).count()
        await update.message.reply_text(f"XML cargado: {result.file_name} ({total} en total)")
    elif result.status == IngestStatus.DUPLICATE:
        await update.message.reply_text(f"Duplicado: {result.file_name} ya está cargado")
    else:
        await update.message.reply_text(f"XML inválido ({result.file_name}): {result.reason}")


# --- Commands ---


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /start and /help."""
    if not is_authorized(update.effective_user.id):
        await update.message.reply_text("Acceso no autorizado.")
        return
    await update.message.reply_text(
        "Envíame los XML de facturas electrónicas y luego:\n\n"
        "/xml - ver XML cargados por receptor\n"
        "/xml_tipos [texto] - buscar tipos de egreso\n"
        "/xml_tipo <archivo> <codigo> - asignar tipo (usa - para quitarlo)\n"
        "/xml_ver <archivo> - ver el detalle de un XML\n"
        "/xml_borrar <archivo> - eliminar un XML\n"
        "/xml_borrar_receptor <cedula> - eliminar los XML de un receptor\n"
        "/xml_limpiar - eliminar todos los XML\n"
        "/xml_exportar [excel|pdf] [faltantes] - exportar y limpiar"
    )


async def cmd_xml_status(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /xml - list loaded documents grouped by receiver."""
    if not is_authorized(update.effective_user.id):
        return

    records = await _store(context).list_all()
    if not records:
        await update.message.reply_text(
            "No hay XML cargados. Envíame los archivos .xml de las facturas electrónicas."
        )
        return

    catalog = _catalog(context)
    by_name = {r.file_name: r for r in records}
    missing = sum(1 for r in records if not r.has_category)

    lines = [f"{len(records)} XML cargados, {missing} sin tipo de egreso.\n"]
    for group in group_by_receiver(records):
        header = f"Receptor {group.label}"
        if group.receiver_name:
            header += f" - {group.receiver_name}"
        lines.append(f"{header} ({len(group.file_names)})")
        for name in group.file_names[:MAX_LIST]:
            lines.append(f"  {name}: {catalog.label(by_name[name].expense_category)}")
        if len(group.file_names) > MAX_LIST:
            lines.append(f"  ... y {len(group.file_names) - MAX_LIST} más")
    await update.message.reply_text("\n".join(lines))


async def cmd_xml_types(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /xml_tipos [texto] - search expense types."""
    if not is_authorized(update.effective_user.id):
        return

    query = " ".join(context.args or [])
    matches = _catalog(context).search(query)
    if not matches:
        await update.message.reply_text(f"Sin resultados para '{query}'.")
        return
    lines = ["Tipos de egreso:\n"]
    for t in matches:
        lines.append(f"  {t.code}  {t.name}" + (f"  [{t.account}]" if t.account else ""))
    await update.message.reply_text("\n".join(lines))


async def cmd_xml_set_type(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /xml_tipo <archivo> <codigo|-> - assign or clear an expense type."""
    if not is_authorized(update.effective_user.id):
        return

    args = context.args or []
    if len(args) < 2:
        await update.message.reply_text("Uso: /xml_tipo <archivo.xml> <codigo>  (usa - para quitar el tipo)")
        return

    file_name, code = " ".join(args[:-1]), args[-1].strip()
    store = _store(context)
    catalog = _catalog(context)

    if not await store.has(file_name):
        await update.message.reply_text(f"No encontré {file_name}.")
        return

    if code == "-":
        await store.update_category(file_name, None)
        await update.message.reply_text(f"{file_name}: tipo de egreso eliminado.")
        return

    match = catalog.find(code)
    if match is None:
        await update.message.reply_text(f"Código desconocido: {code}. Usa /xml_tipos para buscar.")
        return

    await store.update_category(file_name, match.code)
    await update.message.reply_text(f"{file_name} -> {match.label}")


async def cmd_xml_view(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /xml_ver <archivo> - show the parsed detail of one stored XML."""
    if not is_authorized(update.effective_user.id):
        return

    file_name = " ".join(context.args or []).strip()
    if not file_name:
        await update.message.reply_text("Uso: /xml_ver <archivo.xml>")
        return

    record = await _store(context).get(file_name)
    if record is None:
        await update.message.reply_text(f"No encontré {file_name}.")
        return

    try:
        invoice = parse_invoice_xml(record.raw_text)
    except ParseError as e:
        logger.warning(f"Stored XML no longer parses: {file_name}: {e}")
        await update.message.reply_text(f"No se pudo leer {file_name}: {e}")
        return

    engine: AggregationEngine = context.bot_data["xml_engine"]
    detail = describe_invoice(
        invoice,
        category_label=_catalog(context).label(record.expense_category),
        default_currency=engine.default_currency,
    )
    await update.message.reply_text(f"{file_name}\n\n{detail}")


async def cmd_xml_delete(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /xml_borrar <archivo>."""
    if not is_authorized(update.effective_user.id):
        return

    file_name = " ".join(context.args or []).strip()
    if not file_name:
        await update.message.reply_text("Uso: /xml_borrar <archivo.xml>")
        return

    store = _store(context)
    if not await store.has(file_name):
        await update.message.reply_text(f"No encontré {file_name}.")
        return
    await store.remove(file_name)
    await update.message.reply_text("XML eliminado correctamente.")


async def cmd_xml_delete_receiver(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /xml_borrar_receptor <cedula|-> - delete one receiver block."""
    if not is_authorized(update.effective_user.id):
        return

    receiver_id = " ".join(context.args or []).strip()
    if not receiver_id:
        await update.message.reply_text("Uso: /xml_borrar_receptor <cedula>  (usa - para los XML sin cédula)")
        return
    if receiver_id == "-":
        receiver_id = ""

    store = _store(context)
    groups = group_by_receiver(await store.list_all())
    group = next((g for g in groups if g.receiver_id == receiver_id), None)
    if group is None:
        await update.message.reply_text(f"No hay XML del receptor {receiver_id or '(sin cédula)'}.")
        return

    failures = await store.remove_many(group.file_names)
    removed = len(group.file_names) - len(failures)
    lines = [f"Se eliminaron {removed} XML del receptor {group.label}."]
    for name, reason in failures:
        lines.append(f"  No se pudo eliminar {name}: {reason}")
    await update.message.reply_text("\n".join(lines))


async def cmd_xml_clear(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /xml_limpiar."""
    if not is_authorized(update.effective_user.id):
        return

    store = _store(context)
    total = await store.count()
    if not total:
        await update.message.reply_text("No hay XML cargados.")
        return
    await store.clear()
    await update.message.reply_text(f"Se eliminaron {total} XML.")


async def cmd_xml_export(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /xml_exportar [excel|pdf] [faltantes]."""
    if not is_authorized(update.effective_user.id):
        return

    args = [a.lower() for a in (context.args or [])]
    allow_missing = "faltantes" in args
    fmt = next((a for a in args if a in ("excel", "pdf")), None)

    if fmt is None:
        await update.message.reply_text("Escoge el formato:", reply_markup=_export_keyboard(allow_missing))
        return

    await _run_export(update, context, fmt, allow_missing)


async def handle_xml_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle inline keyboard presses for XML export."""
    query = update.callback_query
    await query.answer()

    if not is_authorized(query.from_user.id):
        return

    parts = (query.data or "").split(":")
    if len(parts) < 2 or parts[0] != "xml_export":
        return

    fmt = parts[1]
    if fmt not in ("excel", "pdf"):
        return
    allow_missing = len(parts) > 2 and parts[2] == "faltantes"
    await query.edit_message_text(f"Generando {fmt.upper()}...")
    await _run_export(update, context, fmt, allow_missing)


async def _run_export(update: Update, context: ContextTypes.DEFAULT_TYPE, fmt: str, allow_missing: bool):
    chat = update.effective_chat
    store = _store(context)
    engine: AggregationEngine = context.bot_data["xml_engine"]

    try:
        path = await export_and_clear(store, engine, fmt, allow_missing_category=allow_missing)
    except MissingCategory as e:
        await chat.send_message(f"{e}\nPara exportar igual (quedarán como SIN TIPO): /xml_exportar {fmt} faltantes")
        return
    except ExportRenderError as e:
        logger.error(f"XML export render error: {e}")
        await chat.send_message(f"{e}\nLos XML siguen cargados.")
        return
    except ExportError as e:
        await chat.send_message(str(e))
        return
    except EgresosError as e:
        logger.error(f"XML export error: {e}", exc_info=True)
        await chat.send_message(f"No se pudo exportar: {e}")
        return

    with open(path, "rb") as f:
        await chat.send_document(document=f, filename=path.name, caption="Exportación exitosa. XML eliminados.")
