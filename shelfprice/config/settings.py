# shelfprice/config/settings.py

"""Central configuration for the shelfprice engine."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Central configuration for the shelfprice engine."""

    # --- Normalization oracle ---
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    GEMINI_ENDPOINT: str = (
        "https://generativelanguage.googleapis.com/v1beta/models"
    )
    ORACLE_TIMEOUT: int = 120         # Seconds before an oracle call fails
    ORACLE_TEMPERATURE: float = 0.2

    # --- Batching (oracle quota) ---
    UNIFY_BATCH_SIZE: int = 20        # Raw offers per oracle call
    UNIFY_CONCURRENCY: int = 3        # Oracle calls in flight per wave
    UNIFY_BATCH_DELAY: float = 35.0   # Seconds of cooldown between waves

    # --- Ingestion ---
    INGEST_BATCH_SIZE: int = 50       # Unified products per chunk
    INGEST_CONCURRENCY: int = 10      # Products resolved/ingested at once

    # --- Deal listings ---
    DEAL_PAGE_LIMIT: int = 4          # Offers per page unless a limit is given
    DEAL_SECTION_TITLES: dict[str, str] = {
        "top": "Топ продукти",
        "our-choice": "Нашият избор",
    }

    # --- Catalog ---
    OTHER_CATEGORIES: frozenset[str] = frozenset({"Друго", "Other"})
    DEFAULT_OTHER_CATEGORY: str = "Друго"
    SEED_CATEGORIES: list[str] = [
        "Млечни продукти",
        "Месо и колбаси",
        "Риба",
        "Плодове и зеленчуци",
        "Хляб и тестени изделия",
        "Сладкарски изделия",
        "Напитки безалкохолни",
        "Напитки алкохолни",
        "Кафе и чай",
        "Снаксове",
        "Консерви",
        "Зърнени храни",
        "Паста",
        "Подправки и сосове",
        "Замразени",
        "Храна за животни",
        "Почистващи",
        "Хигиена",
    ]

    # --- Currency ---
    BGN_TO_EUR_RATE: float = float(
        os.getenv("BGN_TO_EUR_RATE", "1.95583") or "1.95583"
    )

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    LOGS_DIR: Path = BASE_DIR / "logs"
    PRICE_DB_PATH: Path = Path(
        os.getenv("PRICE_DB_PATH", str(DATA_DIR / "prices.db"))
    )

    # --- Store chains (registry seeded into the database) ---
    STORE_CHAINS: list[dict[str, str]] = [
        {
            "name": "Lidl",
            "base_url": "https://www.lidl.bg",
            "products_page": "/c/nashite-predlozheniya/s10018374",
        },
        {
            "name": "Kaufland",
            "base_url": "https://www.kaufland.bg",
            "products_page": "/aktualni-predlozheniya/oferti.html",
        },
        {
            "name": "Billa",
            "base_url": "https://www.billa.bg",
            "products_page": "/promocii/sedmichna-broshura",
        },
        {
            "name": "TMarket",
            "base_url": "https://tmarketonline.bg",
            "products_page": "/promocii",
        },
    ]
