"""Configuration management for the XML expenses bot."""
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

QUOTES = ("'", '"')


def clean_env_value(value):
    """Trim a raw env value and drop stray quotes around it.

    Hosting dashboards often save `"value"` (or only one of the quotes) instead of `value`.
    """
    value = (value or "").strip()
    if value[:1] in QUOTES:
        value = value[1:]
    if value[-1:] in QUOTES:
        value = value[:-1]
    return value.strip()


def parse_id_list(raw):
    return [int(part) for part in (p.strip() for p in (raw or "").split(",")) if part]


# Bot token from @BotFather
TELEGRAM_BOT_TOKEN = clean_env_value(os.getenv("TELEGRAM_BOT_TOKEN"))

# Only these Telegram user IDs may load or export XML (empty = anyone)
ALLOWED_USER_IDS = parse_id_list(clean_env_value(os.getenv("ALLOWED_USER_IDS")))

# Local storage
DATA_DIR = clean_env_value(os.getenv("DATA_DIR")) or "./data"
XML_DB_PATH = clean_env_value(os.getenv("XML_DB_PATH")) or os.path.join(DATA_DIR, "xml_egresos.db")
EXPORT_DIR = clean_env_value(os.getenv("EXPORT_DIR")) or os.path.join(DATA_DIR, "exports")

# Expense type catalog (JSON list of {codigo, nombre, cuenta})
EXPENSE_CATALOG_PATH = clean_env_value(os.getenv("EXPENSE_CATALOG_PATH")) or str(
    Path(__file__).parent / "egresos" / "accounting" / "tipos_egreso.json"
)

# Currency assumed when a document has no CodigoMoneda
DEFAULT_CURRENCY = (clean_env_value(os.getenv("DEFAULT_CURRENCY")) or "CRC").upper()

# es-CR number formatting: 1 234 567,89 (non-breaking space grouping)
NUMBER_GROUP_SEPARATOR = os.getenv("NUMBER_GROUP_SEPARATOR", "\u00a0")
NUMBER_DECIMAL_SEPARATOR = os.getenv("NUMBER_DECIMAL_SEPARATOR", ",")
