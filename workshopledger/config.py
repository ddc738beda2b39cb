import os

# ----------------------------
# Backend selection
# ----------------------------
LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "memory").lower()  # memory|pg|redis
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./workshopledger.db")
REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")

# ----------------------------
# Inventory
# ----------------------------
PUBLIC_LIMITS = {
    "ga": int(os.getenv("PUBLIC_LIMIT_GA", "35")),
    "vip": int(os.getenv("PUBLIC_LIMIT_VIP", "15")),
}

_DEFAULT_CITIES = (
    "dallas-jan-2026,atlanta-feb-2026,la-mar-2026,"
    "sf-jun-2026,chicago-may-2026,nyc-apr-2026"
)
WORKSHOP_CITIES = [
    c.strip()
    for c in os.getenv("WORKSHOP_CITIES", _DEFAULT_CITIES).split(",")
    if c.strip()
]

# public spots remaining at or below which a city lands in an alert bucket
CRITICAL_THRESHOLD = {"ga": 2, "vip": 1}
LOW_THRESHOLD = {"ga": 5, "vip": 3}

GA_ALERT_LADDER = [25, 15, 10, 5, 2, 0]
VIP_ALERT_LADDER = [10, 5, 3, 1, 0]

# ----------------------------
# Checkout
# ----------------------------
MAX_QUANTITY_PER_ORDER = 10
LARGE_ORDER_QUANTITY = 5
LOW_STOCK_WARNING = 5
SUGGESTION_CITY_LIMIT = 3

# ----------------------------
# Member discount
# ----------------------------
MEMBER_DISCOUNT_PERCENT = {
    "ga": int(os.getenv("MEMBER_DISCOUNT_GA_PCT", "20")),
    "vip": int(os.getenv("MEMBER_DISCOUNT_VIP_PCT", "10")),
}
