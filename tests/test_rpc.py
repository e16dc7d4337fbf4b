from __future__ import annotations

import asyncio
import base64

import base58
import pytest

from fakes import FakeResponse, FakeSession, pk
from transports.solana_rpc import (
    AccountNotFoundError,
    RpcError,
    SolanaRpcClient,
    TransactionFailedError,
    decode_account_data,
    memcmp_filter,
)

ENDPOINT = "http://rpc.test"


def _ok(result):
    return FakeResponse(200, {"jsonrpc": "2.0", "id": 1, "result": result})


def _client(*responses, **kwargs):
    session = FakeSession(list(responses))
    return SolanaRpcClient(ENDPOINT, session=session, **kwargs), session


def test_memcmp_filter_encodes_bytes_as_base58():
    assert memcmp_filter(0, b"\x01\x02") == {
        "memcmp": {"offset": 0, "bytes": base58.b58encode(b"\x01\x02").decode()}
    }


@pytest.mark.parametrize(
    "data",
    [
        [base64.b64encode(b"payload").decode(), "base64"],
        [base58.b58encode(b"payload").decode(), "base58"],
        base64.b64encode(b"payload").decode(),
    ],
)
def test_decode_account_data(data):
    assert decode_account_data(data) == b"payload"


def test_decode_account_data_rejects_unknown_encoding():
    with pytest.raises(ValueError):
        decode_account_data(["{}", "jsonParsed"])


def test_json_rpc_error_is_raised():
    client, _ = _client(
        FakeResponse(200, {"jsonrpc": "2.0", "id": 1, "error": {"code": -32002, "message": "bad"}})
    )
    with pytest.raises(RpcError) as info:
        asyncio.run(client.call("getHealth"))
    assert info.value.code == -32002


def test_http_error_is_raised():
    client, _ = _client(FakeResponse(503, text="unavailable"))
    with pytest.raises(RpcError) as info:
        asyncio.run(client.call("getHealth"))
    assert info.value.code == 503


def test_get_program_accounts_sends_filters_and_decodes():
    data = base64.b64encode(b"abc").decode()
    client, session = _client(
        _ok([{"pubkey": pk(1), "account": {"data": [data, "base64"]}}])
    )
    filters = [memcmp_filter(0, b"\x07")]

    accounts = asyncio.run(client.get_program_accounts(pk(50), filters))

    assert accounts == [(pk(1), b"abc")]
    _, kwargs = session.calls[0]
    method, params = kwargs["json"]["method"], kwargs["json"]["params"]
    assert method == "getProgramAccounts"
    assert params[0] == pk(50)
    assert params[1]["filters"] == filters
    assert params[1]["encoding"] == "base64"


def test_missing_account_raises_not_found():
    client, _ = _client(_ok({"context": {"slot": 1}, "value": None}))
    with pytest.raises(AccountNotFoundError):
        asyncio.run(client.get_account_data(pk(2)))


def test_latest_blockhash():
    client, _ = _client(
        _ok({"context": {"slot": 9}, "value": {"blockhash": pk(7), "lastValidBlockHeight": 150}})
    )
    assert asyncio.run(client.get_latest_blockhash()) == (pk(7), 150)


def test_send_and_confirm_waits_for_commitment():
    client, session = _client(
        _ok("5ig"),
        _ok({"value": [None]}),
        _ok(10),
        _ok({"value": [{"err": None, "confirmationStatus": "confirmed"}]}),
        commitment="confirmed",
        poll_interval=0,
    )

    assert asyncio.run(client.send_and_confirm_transaction(b"\x01\x02", 100)) == "5ig"

    methods = [kwargs["json"]["method"] for _, kwargs in session.calls]
    assert methods == [
        "sendTransaction", "getSignatureStatuses", "getBlockHeight", "getSignatureStatuses",
    ]
    sent = session.calls[0][1]["json"]["params"]
    assert base64.b64decode(sent[0]) == b"\x01\x02"


def test_failed_transaction_raises():
    client, _ = _client(_ok({"value": [{"err": {"InstructionError": [0, "Custom"]}}]}))
    with pytest.raises(TransactionFailedError):
        asyncio.run(client.confirm_transaction("5ig", 100))


def test_close_leaves_injected_session_open():
    client, session = _client()
    asyncio.run(client.close())
    assert session.closed is False
