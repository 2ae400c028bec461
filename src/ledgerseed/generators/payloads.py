"""Request payloads for every entity kind.

``generate_payload`` is a pure function of the entity kind, a context
mapping and a ``Random`` instance; seeding the instance makes a run
reproducible. Natural keys (ledger, portfolio and segment names, account
aliases) depend only on the entity's index within its parent, so a re-run
or a resume hits a conflict on the same key and reuses the existing entity
whatever the state of the random source.
"""

from collections.abc import Mapping
from random import Random
from typing import Any

from ledgerseed.models.entities import EntityKind
from ledgerseed.utils.exceptions import ValidationError

# Amounts are sent with two decimal places
AMOUNT_SCALE = 2

ASSET_CATALOG: list[tuple[str, str, str]] = [
    ("BRL", "Brazilian Real", "currency"),
    ("USD", "US Dollar", "currency"),
    ("EUR", "Euro", "currency"),
    ("GBP", "British Pound", "currency"),
    ("JPY", "Japanese Yen", "currency"),
    ("CHF", "Swiss Franc", "currency"),
    ("CAD", "Canadian Dollar", "currency"),
    ("AUD", "Australian Dollar", "currency"),
    ("MXN", "Mexican Peso", "currency"),
    ("ARS", "Argentine Peso", "currency"),
    ("CLP", "Chilean Peso", "currency"),
    ("COP", "Colombian Peso", "currency"),
    ("BTC", "Bitcoin", "crypto"),
    ("ETH", "Ether", "crypto"),
    ("GOLD", "Gold", "commodity"),
    ("SILVER", "Silver", "commodity"),
    ("CNY", "Chinese Yuan", "currency"),
    ("INR", "Indian Rupee", "currency"),
    ("ZAR", "South African Rand", "currency"),
    ("SGD", "Singapore Dollar", "currency"),
]

CRYPTO_CODES = frozenset({"BTC", "ETH"})
COMMODITY_CODES = frozenset({"GOLD", "SILVER"})

COMPANY_PREFIXES = ["Acme", "Globex", "Initech", "Umbrella", "Stark", "Wayne", "Tyrell", "Soylent", "Hooli", "Vandelay"]
COMPANY_SUFFIXES = ["Holdings", "Financial", "Payments", "Capital", "Group", "Bank"]
CITIES = [
    ("São Paulo", "SP"),
    ("Rio de Janeiro", "RJ"),
    ("Belo Horizonte", "MG"),
    ("Curitiba", "PR"),
    ("Porto Alegre", "RS"),
    ("Recife", "PE"),
]
LEDGER_PURPOSES = ["Operating", "Treasury", "Payments", "Settlement", "Custody", "Lending", "Cards", "Escrow"]
PORTFOLIO_NAMES = ["Retail", "Corporate", "Wealth", "SMB", "Institutional", "Private"]
SEGMENT_NAMES = ["North", "South", "East", "West", "Central", "Online", "Partners", "Enterprise"]
ACCOUNT_TYPES = ["deposit", "savings", "loans", "marketplace", "creditCard"]


def asset_for_index(index: int) -> tuple[str, str, str]:
    """Catalog entry for the ``index``-th asset of a ledger.

    Codes are unique within a ledger; past the end of the catalog a numeric
    suffix is appended.
    """
    code, name, asset_type = ASSET_CATALOG[index % len(ASSET_CATALOG)]
    cycle = index // len(ASSET_CATALOG)
    if cycle:
        return f"{code}{cycle}", f"{name} {cycle}", asset_type
    return code, name, asset_type


def external_account_alias(asset_code: str) -> str:
    """Alias of the platform's external source account for an asset."""
    return f"@external/{asset_code}"


def deposit_amount(asset_code: str) -> int:
    """Initial deposit in minor units."""
    if asset_code in CRYPTO_CODES:
        return 10_000
    if asset_code in COMMODITY_CODES:
        return 500_000
    return 1_000_000


def transfer_amount(asset_code: str, rng: Random) -> int:
    """Random transfer amount in minor units, small enough to stay funded."""
    if asset_code in CRYPTO_CODES:
        low, high = 10, 100
    elif asset_code in COMMODITY_CODES:
        low, high = 100, 1_000
    else:
        low, high = 10_000, 50_000
    return rng.randint(low, high)


def format_amount(amount: int, scale: int = AMOUNT_SCALE) -> str:
    """Render minor units as a decimal string (12345 -> "123.45")."""
    sign = "-" if amount < 0 else ""
    whole, fraction = divmod(abs(amount), 10 ** scale)
    if scale == 0:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{fraction:0{scale}d}"


def _pick(choices: list[str], index: int) -> str:
    return choices[index % len(choices)]


def _require(context: Mapping[str, Any], *keys: str) -> None:
    missing = [key for key in keys if context.get(key) in (None, "")]
    if missing:
        raise ValidationError(
            f"Missing payload context: {', '.join(missing)}",
            {"missing": missing},
        )


def _organization(context: Mapping[str, Any], rng: Random) -> dict[str, Any]:
    index = context.get("index", 0)
    name = f"{rng.choice(COMPANY_PREFIXES)} {rng.choice(COMPANY_SUFFIXES)} {index + 1}"
    city, state = rng.choice(CITIES)
    return {
        "legalName": name,
        "doingBusinessAs": name.split(" ")[0],
        "legalDocument": "".join(str(rng.randint(0, 9)) for _ in range(14)),
        "address": {
            "line1": f"Rua {rng.randint(1, 2000)}",
            "zipCode": f"{rng.randint(10000, 99999)}-{rng.randint(100, 999)}",
            "city": city,
            "state": state,
            "country": "BR",
        },
        "status": {"code": "ACTIVE"},
        "metadata": {"source": "ledgerseed", "index": index},
    }


def _ledger(context: Mapping[str, Any], rng: Random) -> dict[str, Any]:
    index = context.get("index", 0)
    return {
        "name": f"{_pick(LEDGER_PURPOSES, index)} Ledger {index + 1}",
        "status": {"code": "ACTIVE"},
        "metadata": {"source": "ledgerseed", "index": index},
    }


def _asset(context: Mapping[str, Any], rng: Random) -> dict[str, Any]:
    index = context.get("index", 0)
    code, name, asset_type = asset_for_index(index)
    return {
        "name": name,
        "type": asset_type,
        "code": context.get("code") or code,
        "status": {"code": "ACTIVE"},
        "metadata": {"source": "ledgerseed"},
    }


def _portfolio(context: Mapping[str, Any], rng: Random) -> dict[str, Any]:
    index = context.get("index", 0)
    return {
        "name": f"{_pick(PORTFOLIO_NAMES, index)} Portfolio {index + 1}",
        "entityId": f"entity-{rng.randint(100000, 999999)}",
        "status": {"code": "ACTIVE"},
        "metadata": {"source": "ledgerseed"},
    }


def _segment(context: Mapping[str, Any], rng: Random) -> dict[str, Any]:
    index = context.get("index", 0)
    return {
        "name": f"{_pick(SEGMENT_NAMES, index)} Segment {index + 1}",
        "status": {"code": "ACTIVE"},
        "metadata": {"source": "ledgerseed"},
    }


def _account(context: Mapping[str, Any], rng: Random) -> dict[str, Any]:
    _require(context, "asset_code")
    index = context.get("index", 0)
    asset_code = context["asset_code"]
    account_type = _pick(ACCOUNT_TYPES, index)
    payload: dict[str, Any] = {
        "name": f"{account_type.title()} Account {index + 1}",
        "alias": f"@{account_type.lower()}-{asset_code.lower()}-{index + 1}",
        "assetCode": asset_code,
        "type": account_type,
        "status": {"code": "ACTIVE"},
        "metadata": {"source": "ledgerseed"},
    }
    if context.get("portfolio_id"):
        payload["portfolioId"] = context["portfolio_id"]
    if context.get("segment_id"):
        payload["segmentId"] = context["segment_id"]
    return payload


def _transaction(context: Mapping[str, Any], rng: Random) -> dict[str, Any]:
    _require(context, "asset_code", "source_alias", "destination_alias", "amount")
    asset_code = context["asset_code"]
    value = format_amount(int(context["amount"]))
    transaction_type = context.get("transaction_type", "transfer")
    description = context.get("description") or (
        f"{transaction_type.title()} of {value} {asset_code} "
        f"from {context['source_alias']} to {context['destination_alias']}"
    )
    amount = {"asset": asset_code, "value": value}
    metadata: dict[str, Any] = {"source": "ledgerseed", "type": transaction_type}
    if context.get("sequence") is not None:
        metadata["sequence"] = context["sequence"]
    return {
        "description": description,
        "metadata": metadata,
        "send": {
            "asset": asset_code,
            "value": value,
            "source": {"from": [{"accountAlias": context["source_alias"], "amount": amount}]},
            "distribute": {"to": [{"accountAlias": context["destination_alias"], "amount": amount}]},
        },
    }


_BUILDERS = {
    EntityKind.ORGANIZATION: _organization,
    EntityKind.LEDGER: _ledger,
    EntityKind.ASSET: _asset,
    EntityKind.PORTFOLIO: _portfolio,
    EntityKind.SEGMENT: _segment,
    EntityKind.ACCOUNT: _account,
    EntityKind.TRANSACTION: _transaction,
}


def generate_payload(
    kind: EntityKind,
    context: Mapping[str, Any] | None = None,
    rng: Random | None = None,
) -> dict[str, Any]:
    """Build the request body for one entity.

    Args:
        kind: Entity kind.
        context: ``index`` of the entity within its parent, plus kind-specific
            keys: ``asset_code`` for accounts; ``asset_code``,
            ``source_alias``, ``destination_alias`` and ``amount`` (minor
            units) for transactions.
        rng: Random source; a fresh unseeded one if omitted.

    Returns:
        JSON-compatible payload.

    Raises:
        ValidationError: If a required context key is missing.
    """
    return _BUILDERS[kind](context or {}, rng or Random())
