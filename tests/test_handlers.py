"""Tests for the Telegram command handlers, with mocked updates."""

from unittest.mock import AsyncMock, MagicMock

import pytest

import config
from egresos.accounting.invoice_models import StoredInvoice
from egresos.handlers import xml_egresos
from egresos.handlers.xml_egresos import (
    cmd_xml_delete_receiver,
    cmd_xml_export,
    cmd_xml_set_type,
    cmd_xml_status,
    cmd_xml_view,
    handle_xml_callback,
    handle_xml_upload,
    is_authorized,
    setup_xml_services,
)


@pytest.fixture(autouse=True)
def open_access(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "ALLOWED_USER_IDS", [])
    monkeypatch.setattr(config, "EXPORT_DIR", str(tmp_path / "exports"))


@pytest.fixture
def context(store, catalog):
    ctx = MagicMock()
    ctx.bot_data = {}
    ctx.args = []
    setup_xml_services(ctx.bot_data, store, catalog)
    return ctx


@pytest.fixture
def update():
    upd = MagicMock()
    upd.effective_user.id = 42
    upd.message.reply_text = AsyncMock()
    upd.effective_chat.send_message = AsyncMock()
    upd.effective_chat.send_document = AsyncMock()
    return upd


def _last_reply(update):
    return update.message.reply_text.call_args[0][0]


def test_is_authorized_respects_allow_list(monkeypatch):
    assert is_authorized(1)
    monkeypatch.setattr(config, "ALLOWED_USER_IDS", [7])
    assert is_authorized(7)
    assert not is_authorized(1)


async def test_upload_stores_document(update, context, store, invoice_xml):
    update.message.document.file_name = "f1.xml"
    update.message.document.mime_type = "application/xml"
    tg_file = MagicMock()
    tg_file.download_as_bytearray = AsyncMock(return_value=bytearray(invoice_xml().encode()))
    context.bot.get_file = AsyncMock(return_value=tg_file)

    await handle_xml_upload(update, context)

    assert await store.has("f1.xml")
    assert "XML cargado" in _last_reply(update)


async def test_upload_reports_invalid_xml(update, context, store):
    update.message.document.file_name = "roto.xml"
    update.message.document.mime_type = "text/xml"
    tg_file = MagicMock()
    tg_file.download_as_bytearray = AsyncMock(return_value=bytearray(b"<roto"))
    context.bot.get_file = AsyncMock(return_value=tg_file)

    await handle_xml_upload(update, context)

    assert await store.count() == 0
    assert "inválido" in _last_reply(update)


async def test_set_type_normalizes_code(update, context, store, pipeline, invoice_xml):
    await pipeline.ingest("f1.xml", invoice_xml())
    context.args = ["f1.xml", "1"]

    await cmd_xml_set_type(update, context)

    assert (await store.get("f1.xml")).expense_category == "001"
    assert "Alquiler (001)" in _last_reply(update)


async def test_set_type_rejects_unknown_code(update, context, store, pipeline, invoice_xml):
    await pipeline.ingest("f1.xml", invoice_xml())
    context.args = ["f1.xml", "555"]

    await cmd_xml_set_type(update, context)

    assert (await store.get("f1.xml")).expense_category is None
    assert "desconocido" in _last_reply(update)


async def test_status_groups_by_receiver(update, context, pipeline, invoice_xml):
    await pipeline.ingest("a.xml", invoice_xml(receiver_id="111"))
    await pipeline.ingest("b.xml", invoice_xml(receiver_id=None))

    await cmd_xml_status(update, context)

    text = _last_reply(update)
    assert "2 sin tipo" in text
    assert text.index("Receptor 111") < text.index("Receptor Sin cédula")


async def test_delete_receiver_removes_only_that_block(update, context, store, pipeline, invoice_xml):
    await pipeline.ingest("a.xml", invoice_xml(receiver_id="111"))
    await pipeline.ingest("b.xml", invoice_xml(receiver_id="222"))
    context.args = ["111"]

    await cmd_xml_delete_receiver(update, context)

    assert [r.file_name for r in await store.list_all()] == ["b.xml"]


async def test_export_without_format_offers_keyboard(update, context):
    await cmd_xml_export(update, context)

    markup = update.message.reply_text.call_args.kwargs["reply_markup"]
    data = [b.callback_data for b in markup.inline_keyboard[0]]
    assert data == ["xml_export:excel", "xml_export:pdf"]


async def test_export_blocked_by_missing_category_keeps_store(update, context, store, pipeline, invoice_xml):
    await pipeline.ingest("a.xml", invoice_xml())
    context.args = ["excel"]

    await cmd_xml_export(update, context)

    message = update.effective_chat.send_message.call_args[0][0]
    assert "faltantes" in message
    assert await store.count() == 1
    update.effective_chat.send_document.assert_not_called()


async def test_export_callback_sends_file_and_clears(update, context, store, pipeline, invoice_xml):
    await pipeline.ingest("a.xml", invoice_xml())
    update.callback_query.data = "xml_export:excel:faltantes"
    update.callback_query.from_user.id = 42
    update.callback_query.answer = AsyncMock()
    update.callback_query.edit_message_text = AsyncMock()

    await handle_xml_callback(update, context)

    update.effective_chat.send_document.assert_awaited_once()
    assert update.effective_chat.send_document.call_args.kwargs["filename"].endswith(".xlsx")
    assert await store.count() == 0


async def test_setup_wires_shared_services(store, catalog):
    bot_data = {}
    xml_egresos.setup_xml_services(bot_data, store, catalog)
    assert bot_data["xml_pipeline"].store is store
    assert bot_data["xml_engine"].catalog is catalog


async def test_view_shows_parsed_detail(update, context, store, pipeline, invoice_xml):
    await pipeline.ingest("f1.xml", invoice_xml())
    await store.update_category("f1.xml", "001")
    context.args = ["f1.xml"]

    await cmd_xml_view(update, context)

    text = _last_reply(update)
    assert text.startswith("f1.xml")
    assert "Tipo comprobante: 01 - Factura electrónica" in text
    assert "Tipo egreso: Alquiler (001)" in text
    assert "Nombre: Proveedor Uno S.A." in text
    assert "Impuesto al Valor Agregado (01) | 08 - Tarifa general 13% | 13,00% | 21,00" in text


async def test_view_unknown_file(update, context):
    context.args = ["nada.xml"]

    await cmd_xml_view(update, context)

    assert "No encontré nada.xml" in _last_reply(update)


async def test_view_reports_stored_document_that_no_longer_parses(update, context, store):
    await store.put(StoredInvoice(file_name="roto.xml", raw_text="<roto", created_at_millis=1))
    context.args = ["roto.xml"]

    await cmd_xml_view(update, context)

    assert "No se pudo leer roto.xml" in _last_reply(update)
