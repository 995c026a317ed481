"""Main entry point for the XML expense bot."""

import logging
import sys

from telegram.ext import Application, CallbackQueryHandler, CommandHandler, MessageHandler, filters

import config
from egresos.accounting.categorizer import ExpenseCatalog
from egresos.accounting.storage import XmlStore
from egresos.handlers.xml_egresos import (
    cmd_start,
    cmd_xml_clear,
    cmd_xml_delete,
    cmd_xml_delete_receiver,
    cmd_xml_export,
    cmd_xml_set_type,
    cmd_xml_status,
    cmd_xml_types,
    cmd_xml_view,
    handle_xml_callback,
    handle_xml_upload,
    setup_xml_services,
)

logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)


async def _post_init(application: Application):
    await application.bot_data["xml_store"].initialize()


async def _post_shutdown(application: Application):
    await application.bot_data["xml_store"].close()


def main():
    """Start the bot."""
    if not config.TELEGRAM_BOT_TOKEN:
        logger.error("TELEGRAM_BOT_TOKEN not set. Please check your .env file.")
        return

    logger.info("Starting XML expense bot...")

    if not config.ALLOWED_USER_IDS:
        logger.warning("=" * 60)
        logger.warning("SECURITY WARNING: ALLOWED_USER_IDS is not set!")
        logger.warning("Anyone can use this bot. Add your Telegram user ID to .env:")
        logger.warning("ALLOWED_USER_IDS=123456789")
        logger.warning("=" * 60)

    application = (
        Application.builder()
        .token(config.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )
    setup_xml_services(application.bot_data, XmlStore(), ExpenseCatalog.from_file())

    application.add_handler(CommandHandler(["start", "help"], cmd_start))
    application.add_handler(CommandHandler("xml", cmd_xml_status))
    application.add_handler(CommandHandler("xml_tipos", cmd_xml_types))
    application.add_handler(CommandHandler("xml_tipo", cmd_xml_set_type))
    application.add_handler(CommandHandler("xml_ver", cmd_xml_view))
    application.add_handler(CommandHandler("xml_borrar", cmd_xml_delete))
    application.add_handler(CommandHandler("xml_borrar_receptor", cmd_xml_delete_receiver))
    application.add_handler(CommandHandler("xml_limpiar", cmd_xml_clear))
    application.add_handler(CommandHandler("xml_exportar", cmd_xml_export))

    # XML documents (some clients send them as text/plain or octet-stream)
    application.add_handler(MessageHandler(filters.Document.ALL, handle_xml_upload))

    application.add_handler(CallbackQueryHandler(handle_xml_callback, pattern=r"^xml_export:"))

    logger.info("Bot is running. Press Ctrl+C to stop.")
    application.run_polling(allowed_updates=["message", "callback_query"])


if __name__ == "__main__":
    main()
