"""
HTTP provider against a mocked Sidecar-style service.
"""
import httpx
import pytest

from feeaudit.core.audit_exceptions import ProviderFailure
from feeaudit.core.chain_types import (
    CommitteeVotes,
    DispatchInfo,
    EthereumTransaction,
    EthTransactionType,
    RuntimeUpgrade,
)
from feeaudit.core.constants import FEE_MULTIPLIER_ONE
from feeaudit.provider import HttpChainProvider, StateQuery
from feeaudit.provider.http_provider import parse_digest_log, to_int

PARENT = "0x" + "01" * 32
HASH = "0x" + "02" * 32
AUTHOR = "0x" + "ab" * 20

BLOCK = {
    "number": "1200",
    "hash": HASH,
    "parentHash": PARENT,
    "logs": [{"type": "PreRuntime", "index": "6", "value": ["0x6e6d6273", AUTHOR]}],
    "onInitialize": {"events": []},
    "extrinsics": [
        {
            "method": {"pallet": "timestamp", "method": "set"},
            "signature": None,
            "args": {"now": "1650000000000"},
            "raw": "0x280403000b",
            "events": [
                {
                    "method": {"pallet": "system", "method": "ExtrinsicSuccess"},
                    "data": [{"weight": "1000", "class": "Mandatory", "paysFee": "Yes"}],
                }
            ],
        },
        {
            "method": {"pallet": "balances", "method": "transfer"},
            "signature": {"signature": "0xsig", "signer": {"id": "0x" + "cd" * 20}},
            "args": {"dest": "0x" + "ef" * 20, "value": "1000000000000000000"},
            "encodedLength": "144",
            "feeDetails": {"inclusionFee": {"baseFee": "125000", "lenFee": "144", "adjustedWeightFee": "1"}},
            "events": [
                {"method": {"pallet": "treasury", "method": "Deposit"}, "data": ["40028"]},
                {
                    "method": {"pallet": "system", "method": "ExtrinsicFailed"},
                    "data": [{"module": {"index": 10}}, {"weight": {"refTime": "200", "proofSize": "0"}, "paysFee": "Yes"}],
                },
            ],
        },
        {
            "method": {"pallet": "ethereum", "method": "transact"},
            "signature": None,
            "args": {
                "transaction": {
                    "eip1559": {"gasLimit": "21000", "maxFeePerGas": "0x64", "maxPriorityFeePerGas": "10"}
                }
            },
            "events": [],
        },
    ],
    "onFinalize": {"events": [{"method": {"pallet": "balances", "method": "Endowed"}, "data": []}]},
}


def make_handler(routes, calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        route = routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    return handler


def provider_for(routes, calls=None, max_retries=2):
    return HttpChainProvider(
        "http://sidecar.test",
        max_retries=max_retries,
        backoff_base=0,
        transport=httpx.MockTransport(make_handler(routes, calls)),
    )


BLOCK_ROUTES = {
    "/blocks/1200": BLOCK,
    "/pallets/transactionPayment/storage/nextFeeMultiplier": {"value": str(FEE_MULTIPLIER_ONE * 2)},
    "/pallets/transactionPayment/consts/weightToFee": {
        "value": [{"coeffInteger": "50", "coeffFrac": "0", "negative": False, "degree": "1"}]
    },
}


@pytest.mark.asyncio
async def test_block_decoding():
    async with provider_for(BLOCK_ROUTES) as provider:
        block = await provider.get_block(1200)

    assert block.number == 1200
    assert block.header.parent_hash == PARENT
    assert block.find_author() == AUTHOR

    timestamp, transfer, eth = block.extrinsics
    assert timestamp.call_name == "timestamp.set"
    assert not timestamp.is_signed
    assert timestamp.encoded_length == 5

    assert transfer.signer == "0x" + "cd" * 20
    assert transfer.encoded_length == 144
    assert transfer.fees.base_fee == 125_000
    assert transfer.fees.len_fee == 144
    # 200 weight * 50 per unit * multiplier 2
    assert transfer.fees.weight_fee == 20_000

    tx = eth.args[0]
    assert tx == EthereumTransaction(
        EthTransactionType.EIP1559, gas_limit=21_000, max_fee_per_gas=100, max_priority_fee_per_gas=10
    )

    failed = [e for e in block.events_for(1) if e.method == "ExtrinsicFailed"][0]
    assert failed.data[1] == DispatchInfo(weight=200, pays_fee=True, dispatch_class="Normal")
    assert block.events[-1].extrinsic_index is None


@pytest.mark.asyncio
async def test_fee_inputs_read_at_parent():
    calls = []
    async with provider_for(BLOCK_ROUTES, calls) as provider:
        await provider.get_block(1200)

    storage = [c for c in calls if c.url.path.startswith("/pallets/")]
    assert storage
    assert all(c.url.params["at"] == PARENT for c in storage)


@pytest.mark.asyncio
async def test_state_queries():
    def storage(request):
        path, params = request.url.path, request.url.params
        if path.endswith("/lastRuntimeUpgrade"):
            return httpx.Response(200, json={"value": {"specVersion": "1201", "specName": "moonriver"}})
        if path.endswith("/system/storage/account"):
            assert params["keys[]"] == "0xtreasury"
            return httpx.Response(200, json={"value": {"nonce": "0", "data": {"free": "987654321", "reserved": "0"}}})
        if path.endswith("/voting"):
            if params["keys[]"] == "0xknown":
                return httpx.Response(200, json={"value": {"index": "1", "ayes": ["0x01"], "nays": ["0x02"]}})
            return httpx.Response(200, json={"value": None})
        return httpx.Response(200, json={"value": "0x3e8"})

    routes = {
        "/pallets/system/storage/lastRuntimeUpgrade": storage,
        "/pallets/system/storage/account": storage,
        "/pallets/balances/storage/totalIssuance": storage,
        "/pallets/baseFee/storage/baseFeePerGas": storage,
        "/pallets/councilCollective/storage/voting": storage,
        "/pallets/treasury/consts/palletId": {"value": "0x70792f7472737279"},
    }
    async with provider_for(routes) as provider:
        assert await provider.get_state_at(HASH, StateQuery.runtime_upgrade()) == RuntimeUpgrade(1201, "moonriver")
        assert await provider.get_state_at(HASH, StateQuery.account_balance("0xtreasury")) == 987_654_321
        assert await provider.get_state_at(HASH, StateQuery.total_issuance()) == 1000
        assert await provider.get_state_at(HASH, StateQuery.base_fee_per_gas()) == 1000
        votes = await provider.get_state_at(PARENT, StateQuery.committee_votes("councilCollective", "0xknown"))
        assert votes == CommitteeVotes(ayes=("0x01",), nays=("0x02",))
        assert await provider.get_state_at(PARENT, StateQuery.committee_votes("councilCollective", "0xnew")) is None
        pallet_id = await provider.get_state_at(HASH, StateQuery.pallet_constant("treasury", "palletId"))
        assert pallet_id == "0x70792f7472737279"


@pytest.mark.asyncio
async def test_chain_identity():
    routes = {
        "/runtime/spec": {"specName": "moonbase", "specVersion": "1700"},
        "/blocks/head": {"number": "55"},
        "/pallets/parachainInfo/storage/parachainId": {"value": "1000"},
    }
    async with provider_for(routes) as provider:
        identity = await provider.get_chain_identity()
        assert await provider.get_best_block_number() == 55

    assert (identity.spec_name, identity.para_id) == ("moonbase", 1000)


@pytest.mark.asyncio
async def test_retries_transient_errors():
    attempts = {"count": 0}

    def flaky(request):
        attempts["count"] += 1
        if attempts["count"] < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"number": "9"})

    async with provider_for({"/blocks/head": flaky}, max_retries=3) as provider:
        assert await provider.get_best_block_number() == 9
    assert attempts["count"] == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    def busy(request):
        return httpx.Response(429, text="slow down")

    async with provider_for({"/blocks/head": busy}, max_retries=2) as provider:
        with pytest.raises(ProviderFailure) as excinfo:
            await provider.get_best_block_number()

    assert excinfo.value.status_code == 429
    assert excinfo.value.details["retries"] == 2
    assert excinfo.value.recoverable


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    calls = []
    async with provider_for({}, calls) as provider:
        with pytest.raises(ProviderFailure) as excinfo:
            await provider.get_block(5)

    assert excinfo.value.status_code == 404
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_transport_errors_become_provider_failures():
    def broken(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with provider_for({"/blocks/head": broken}, max_retries=1) as provider:
        with pytest.raises(ProviderFailure) as excinfo:
            await provider.get_best_block_number()

    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_non_json_body_is_provider_failure():
    def html(request):
        return httpx.Response(200, text="<html>gateway</html>")

    async with provider_for({"/blocks/head": html}) as provider:
        with pytest.raises(ProviderFailure) as excinfo:
            await provider.get_best_block_number()

    assert not excinfo.value.recoverable
    assert isinstance(excinfo.value.__cause__, ValueError)


@pytest.mark.asyncio
async def test_undecodable_values_are_provider_failures():
    routes = {
        "/blocks/head": {"number": "not-a-number"},
        "/pallets/balances/storage/totalIssuance": {"value": "lots"},
    }
    async with provider_for(routes) as provider:
        with pytest.raises(ProviderFailure):
            await provider.get_best_block_number()
        with pytest.raises(ProviderFailure):
            await provider.get_state_at(HASH, StateQuery.total_issuance())


def test_rejects_url_without_host():
    with pytest.raises(ValueError):
        HttpChainProvider("http://")


@pytest.mark.parametrize(
    "raw, expected",
    [(None, 0), (7, 7), ("12", 12), ("0x10", 16), ("1,000", 1000), ({"refTime": "5", "proofSize": "9"}, 5)],
)
def test_to_int(raw, expected):
    assert to_int(raw) == expected


def test_digest_engine_decoded_from_hex():
    log = parse_digest_log({"type": "PreRuntime", "value": ["0x6e6d6273", AUTHOR]})
    assert (log.kind, log.engine, log.payload) == ("preRuntime", "nmbs", AUTHOR)
