# backend/blindbox/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/blindbox.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///blindbox.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Used by `flask ledger init` when --owner is omitted
    LEDGER_OWNER_ADDRESS = os.environ.get("LEDGER_OWNER_ADDRESS")

    # "recording" keeps transfers in-process, "http" posts them to PAYOUT_URL
    PAYOUT_GATEWAY = os.environ.get("PAYOUT_GATEWAY", "recording")
    PAYOUT_URL = os.environ.get("PAYOUT_URL", "http://127.0.0.1:8545/payouts")
    PAYOUT_TIMEOUT_SECONDS = float(os.environ.get("PAYOUT_TIMEOUT_SECONDS", "15"))

    # Flat shipping fee shown in the cart summary (never charged on-ledger)
    CART_SHIPPING_FEE_WEI = int(os.environ.get("CART_SHIPPING_FEE_WEI", "0"))
