"""
HTTP chain data provider.

Talks to a Substrate API Sidecar compatible REST service and turns its JSON
into the decoded types the auditor consumes. Numbers arrive as decimal (or
0x-prefixed hex) strings and are converted to Python ints.

Endpoints used:
    GET /blocks/head
    GET /blocks/{ref}
    GET /pallets/{pallet}/storage/{item}?at=&keys[]=
    GET /pallets/{pallet}/consts/{constant}?at=
    GET /runtime/spec?at=
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Mapping, Optional
from urllib.parse import urlparse

import httpx

from feeaudit.core.audit_exceptions import ProviderFailure
from feeaudit.core.chain_types import (
    BlockHeader,
    BlockRef,
    ChainEvent,
    ChainIdentity,
    CommitteeVotes,
    DecodedBlock,
    DecodedExtrinsic,
    DigestLog,
    DispatchInfo,
    EthereumTransaction,
    EthTransactionType,
    RuntimeUpgrade,
)
from feeaudit.core.constants import ETHEREUM_SECTION
from feeaudit.core.fee_components import WeightToFeeCoefficient, compute_fee_components
from feeaudit.provider.base import ChainDataProvider, StateQuery, StateQueryKind

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


# ==================== JSON decoding helpers ====================


def to_int(value: Any) -> int:
    """Decode an integer sent as int, decimal string or 0x-prefixed hex."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, Mapping):
        # Weights v2 are {"refTime": ..., "proofSize": ...}; fees follow refTime
        return to_int(value.get("refTime", value.get("ref_time", 0)))
    text = str(value).strip()
    if text.lower().startswith("0x"):
        return int(text, 16) if len(text) > 2 else 0
    return int(text.replace(",", ""))


def to_bool_pays(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("yes", "true")
    return bool(value)


def _engine_name(engine: str) -> str:
    if engine.startswith("0x"):
        try:
            return bytes.fromhex(engine[2:]).decode("ascii")
        except (ValueError, UnicodeDecodeError):
            return engine
    return engine


def parse_digest_log(raw: Mapping[str, Any]) -> DigestLog:
    kind = str(raw.get("type", ""))
    kind = kind[:1].lower() + kind[1:]
    value = raw.get("value")
    engine, payload = "", ""
    if isinstance(value, (list, tuple)) and len(value) == 2:
        engine, payload = _engine_name(str(value[0])), str(value[1])
    return DigestLog(kind=kind, engine=engine, payload=payload)


def parse_dispatch_info(raw: Any) -> DispatchInfo:
    if isinstance(raw, DispatchInfo):
        return raw
    raw = raw or {}
    return DispatchInfo(
        weight=to_int(raw.get("weight")),
        pays_fee=to_bool_pays(raw.get("paysFee", raw.get("pays_fee"))),
        dispatch_class=str(raw.get("class", "Normal")),
    )


def parse_event(raw: Mapping[str, Any], extrinsic_index: Optional[int] = None) -> ChainEvent:
    method = raw.get("method") or {}
    section, name = str(method.get("pallet", "")), str(method.get("method", ""))
    data = list(raw.get("data") or [])
    if section == "system" and name == "ExtrinsicSuccess" and data:
        data[0] = parse_dispatch_info(data[0])
    elif section == "system" and name == "ExtrinsicFailed" and len(data) > 1:
        data[1] = parse_dispatch_info(data[1])
    return ChainEvent(section=section, method=name, data=tuple(data), extrinsic_index=extrinsic_index)


def parse_ethereum_transaction(raw: Any) -> Any:
    """Decode the transaction argument of ethereum.transact.

    Newer runtimes wrap it as {"legacy"|"eip2930"|"eip1559": {...}}; older
    ones send the legacy body directly.
    """
    if not isinstance(raw, Mapping):
        return raw
    for key, tx_type in (
        ("legacy", EthTransactionType.LEGACY),
        ("eip2930", EthTransactionType.EIP2930),
        ("eip1559", EthTransactionType.EIP1559),
    ):
        if key in raw:
            return _ethereum_body(tx_type, raw[key] or {})
    if "gasPrice" in raw or "gasLimit" in raw:
        return _ethereum_body(EthTransactionType.LEGACY, raw)
    return raw


def _ethereum_body(tx_type: EthTransactionType, body: Mapping[str, Any]) -> EthereumTransaction:
    return EthereumTransaction(
        tx_type=tx_type,
        gas_limit=to_int(body.get("gasLimit")),
        gas_price=to_int(body.get("gasPrice")),
        max_fee_per_gas=to_int(body.get("maxFeePerGas")),
        max_priority_fee_per_gas=to_int(body.get("maxPriorityFeePerGas")),
    )


def _signer(raw: Mapping[str, Any]) -> Optional[str]:
    signature = raw.get("signature")
    if not signature:
        return None
    signer = signature.get("signer")
    if isinstance(signer, Mapping):
        signer = signer.get("id") or next(iter(signer.values()), None)
    return str(signer) if signer else None


def _encoded_length(raw: Mapping[str, Any]) -> int:
    if raw.get("encodedLength") is not None:
        return to_int(raw["encodedLength"])
    hex_body = str(raw.get("raw") or "")
    if hex_body.startswith("0x"):
        hex_body = hex_body[2:]
    return len(hex_body) // 2


def parse_coefficients(raw: Any) -> list[WeightToFeeCoefficient]:
    if isinstance(raw, Mapping):
        raw = [raw]
    return [WeightToFeeCoefficient.from_mapping(item) for item in raw or ()]


def parse_block(
    raw: Mapping[str, Any],
    fee_multiplier: int,
    coefficients: Iterable[WeightToFeeCoefficient],
) -> DecodedBlock:
    """Build a DecodedBlock from a /blocks/{ref} payload.

    The weight fee of each extrinsic is recomputed from its dispatch weight;
    base and length fees come from feeDetails.inclusionFee when present.
    """
    coefficients = list(coefficients)
    header = BlockHeader(
        number=to_int(raw.get("number")),
        hash=str(raw.get("hash", "")),
        parent_hash=str(raw.get("parentHash", "")),
        digest_logs=tuple(parse_digest_log(log) for log in raw.get("logs") or ()),
    )

    events: list[ChainEvent] = [
        parse_event(event) for event in (raw.get("onInitialize") or {}).get("events") or ()
    ]
    extrinsics: list[DecodedExtrinsic] = []
    for index, item in enumerate(raw.get("extrinsics") or ()):
        extrinsic_events = [parse_event(event, index) for event in item.get("events") or ()]
        events.extend(extrinsic_events)

        method = item.get("method") or {}
        section, name = str(method.get("pallet", "")), str(method.get("method", ""))
        args = list((item.get("args") or {}).values())
        if section == ETHEREUM_SECTION and args:
            args[0] = parse_ethereum_transaction(args[0])

        weight = 0
        for event in extrinsic_events:
            info = next((value for value in event.data if isinstance(value, DispatchInfo)), None)
            if info is not None:
                weight = info.weight
        inclusion = (item.get("feeDetails") or {}).get("inclusionFee") or {}
        fees = compute_fee_components(
            base_fee=to_int(inclusion.get("baseFee")),
            len_fee=to_int(inclusion.get("lenFee")),
            weight=weight,
            fee_multiplier=fee_multiplier,
            coefficients=coefficients,
        )

        extrinsics.append(
            DecodedExtrinsic(
                index=index,
                section=section,
                method=name,
                args=tuple(args),
                signer=_signer(item),
                encoded_length=_encoded_length(item),
                raw_hex=str(item.get("raw") or ""),
                fees=fees,
            )
        )

    events.extend(parse_event(event) for event in (raw.get("onFinalize") or {}).get("events") or ())
    return DecodedBlock(header=header, extrinsics=extrinsics, events=events)


# ==================== Provider ====================


@contextmanager
def _decoding(what: str) -> Iterator[None]:
    """Report a payload that does not decode as a provider failure."""
    try:
        yield
    except (ValueError, TypeError, AttributeError, KeyError) as exc:
        raise ProviderFailure(
            f"Malformed response for {what}: {exc}",
            details={"payload": what},
            recoverable=False,
        ) from exc


class HttpChainProvider(ChainDataProvider):
    """
    ChainDataProvider backed by a Sidecar-style REST API.

    Transport errors, 429 and 5xx responses are retried with exponential
    backoff. Once retries are exhausted, or on any other error status,
    ProviderFailure is raised.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if "://" not in base_url:
            base_url = f"http://{base_url}"
        parsed = urlparse(base_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("base_url must include scheme and host, e.g. http://localhost:8080")

        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        retry_count = 0
        while True:
            try:
                response = await self._client.get(path, params=params)
            except httpx.TransportError as exc:
                if retry_count >= self.max_retries:
                    raise ProviderFailure(
                        f"Request to {path} failed: {exc}",
                        details={"path": path, "retries": retry_count},
                    ) from exc
                reason = str(exc) or type(exc).__name__
            else:
                if response.status_code < 400:
                    with _decoding(path):
                        return response.json()
                if response.status_code not in _RETRYABLE_STATUS or retry_count >= self.max_retries:
                    raise ProviderFailure(
                        f"Request to {path} returned {response.status_code}",
                        status_code=response.status_code,
                        details={"path": path, "retries": retry_count, "body": response.text[:500]},
                    )
                reason = f"HTTP {response.status_code}"

            wait_time = (2**retry_count) * self.backoff_base
            logger.warning(
                "%s on %s. Retrying in %.1fs...",
                reason,
                path,
                wait_time,
                extra={"event": "provider.retry", "retry_count": retry_count, "path": path},
            )
            await asyncio.sleep(wait_time)
            retry_count += 1

    async def _storage(self, ref: BlockRef, pallet: str, item: str, key: Optional[str] = None) -> Any:
        params: dict[str, Any] = {"at": str(ref)}
        if key is not None:
            params["keys[]"] = key
        path = f"/pallets/{pallet}/storage/{item}"
        payload = await self._get(path, params=params)
        with _decoding(path):
            return payload.get("value")

    async def _constant(self, ref: BlockRef, pallet: str, name: str) -> Any:
        path = f"/pallets/{pallet}/consts/{name}"
        payload = await self._get(path, params={"at": str(ref)})
        with _decoding(path):
            return payload.get("value")

    async def get_best_block_number(self) -> int:
        payload = await self._get("/blocks/head")
        with _decoding("/blocks/head"):
            return to_int(payload.get("number"))

    async def get_block(self, ref: BlockRef) -> DecodedBlock:
        path = f"/blocks/{ref}"
        raw = await self._get(path)
        with _decoding(path):
            parent = str(raw.get("parentHash", ""))
        multiplier, coefficients = await asyncio.gather(
            self._storage(parent, "transactionPayment", "nextFeeMultiplier"),
            self._constant(parent, "transactionPayment", "weightToFee"),
        )
        with _decoding(path):
            block = parse_block(raw, to_int(multiplier), parse_coefficients(coefficients))
        logger.debug(
            "Fetched block %s",
            block.number,
            extra={"event": "provider.block_fetched", "block_number": block.number},
        )
        return block

    async def get_state_at(self, ref: BlockRef, query: StateQuery) -> Any:
        kind = query.kind
        if kind is StateQueryKind.PALLET_CONSTANT:
            return await self._constant(ref, query.pallet, query.name)

        value = await self._storage(ref, query.pallet, query.name, query.key)
        with _decoding(f"{query.pallet}.{query.name}"):
            return self._decode_state(kind, value)

    @staticmethod
    def _decode_state(kind: StateQueryKind, value: Any) -> Any:
        if kind is StateQueryKind.RUNTIME_UPGRADE:
            value = value or {}
            return RuntimeUpgrade(
                spec_version=to_int(value.get("specVersion")),
                spec_name=str(value.get("specName", "")),
            )
        if kind is StateQueryKind.ACCOUNT_BALANCE:
            return to_int(((value or {}).get("data") or {}).get("free"))
        if kind is StateQueryKind.COMMITTEE_VOTES:
            if value is None:
                return None
            return CommitteeVotes(
                ayes=tuple(str(member) for member in value.get("ayes") or ()),
                nays=tuple(str(member) for member in value.get("nays") or ()),
            )
        return to_int(value)

    async def get_chain_identity(self) -> ChainIdentity:
        spec = await self._get("/runtime/spec")
        head = await self.get_best_block_number()
        para_id = await self._storage(head, "parachainInfo", "parachainId")
        with _decoding("/runtime/spec"):
            return ChainIdentity(spec_name=str(spec.get("specName", "")), para_id=to_int(para_id))
