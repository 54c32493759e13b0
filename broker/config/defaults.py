"""Default trading vocabularies: supported assets and payment methods."""

DEFAULT_CRYPTOS: list[str] = ["BTC", "ETH", "USDT", "USDC", "LTC"]

DEFAULT_FIATS: list[str] = ["RUB", "USD", "EUR", "UAH"]

DEFAULT_PAYMENT_METHODS: list[str] = [
    "bank_transfer",
    "sberbank",
    "tinkoff",
    "qiwi",
    "yandex_money",
    "cash",
]

# The deal timeout moved between 24h and 6h in earlier deployments;
# 24h is the shipped default and config is the source of truth.
DEFAULT_DEAL_TIMEOUT_HOURS = 24
DEFAULT_ORDER_TIMEOUT_HOURS = 7 * 24
