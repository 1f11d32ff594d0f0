from compact_client.chains import (
    COMPACT_ADDRESS,
    build_compact_typed_data,
    get_block_explorer_tx_url,
    get_chain_name,
    is_supported_chain,
)

from tests.fakes import ADDRESS, LOCK_ID, NOW


def test_supported_chains():
    assert is_supported_chain(1)
    assert is_supported_chain("8453")
    assert not is_supported_chain(999)
    assert not is_supported_chain("mainnet")


def test_chain_names_and_explorers():
    assert get_chain_name(10) == "Optimism"
    assert get_chain_name(999) == "Chain 999"
    assert get_block_explorer_tx_url("130", "0xabc") == "https://uniscan.xyz/tx/0xabc"
    assert get_block_explorer_tx_url(999, "0xabc") is None


def test_compact_typed_data():
    typed = build_compact_typed_data(
        "10",
        {"arbiter": ADDRESS, "sponsor": ADDRESS, "nonce": "7", "expires": NOW, "id": str(LOCK_ID), "amount": 5},
    )

    assert typed["primaryType"] == "Compact"
    assert typed["domain"] == {
        "name": "The Compact",
        "version": "0",
        "chainId": 10,
        "verifyingContract": COMPACT_ADDRESS,
    }
    assert [field["name"] for field in typed["types"]["Compact"]] == [
        "arbiter", "sponsor", "nonce", "expires", "id", "amount",
    ]
    assert typed["message"]["nonce"] == 7
    assert typed["message"]["id"] == LOCK_ID
