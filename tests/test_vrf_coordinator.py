"""In-process randomness coordinator and LINK ledger tests."""

import pytest
from web3 import Web3

from vrf_coordinator import VRFCoordinator, LinkLedger

KEY_HASH = "0x2ed0feb3e7fd2022120aa84fab1945545a9f2ffc9076fd6156fa96eaff4c1311"
CONSUMER = "0x1e8461598caf86db994a0395a9389716e99f6d87"
FEE = 10 ** 17


@pytest.fixture
def ledger():
    return LinkLedger({CONSUMER: 3 * FEE})


@pytest.fixture
def received():
    return []


@pytest.fixture
def coordinator(ledger, received):
    coordinator = VRFCoordinator(ledger=ledger)
    coordinator.register_consumer(CONSUMER, lambda rid, value: received.append((rid, value)))
    return coordinator


def test_ledger_checksums_holders(ledger):
    assert ledger.balance_of(Web3.to_checksum_address(CONSUMER)) == 3 * FEE
    assert ledger.balance_of("0x" + "00" * 20) == 0


def test_ledger_transfer(ledger):
    other = "0x" + "11" * 20
    ledger.transfer(CONSUMER, other, FEE)
    assert ledger.balance_of(CONSUMER) == 2 * FEE
    assert ledger.balance_of(other) == FEE

    with pytest.raises(ValueError):
        ledger.transfer(other, CONSUMER, 2 * FEE)
    assert ledger.balance_of(other) == FEE


def test_request_ids_are_unique_hashes(coordinator):
    ids = [coordinator.request_randomness(CONSUMER, KEY_HASH, FEE) for _ in range(3)]
    assert len(set(ids)) == 3
    for request_id in ids:
        assert request_id.startswith("0x")
        assert len(request_id) == 66


def test_request_id_matches_keccak(coordinator):
    request_id = coordinator.request_randomness(CONSUMER, KEY_HASH, FEE)
    expected = Web3.keccak(
        bytes.fromhex(KEY_HASH[2:]) + bytes.fromhex(CONSUMER[2:])
        + (0).to_bytes(32, "big") + (0).to_bytes(32, "big")
    )
    assert request_id == Web3.to_hex(expected)


def test_request_charges_fee(coordinator, ledger):
    coordinator.request_randomness(CONSUMER, KEY_HASH, FEE)
    assert ledger.balance_of(CONSUMER) == 2 * FEE
    assert ledger.balance_of(coordinator.address) == FEE


def test_request_without_funds_fails(coordinator):
    for _ in range(3):
        coordinator.request_randomness(CONSUMER, KEY_HASH, FEE)
    with pytest.raises(ValueError):
        coordinator.request_randomness(CONSUMER, KEY_HASH, FEE)
    assert len(coordinator.requests) == 3


def test_unregistered_consumer_rejected(coordinator):
    with pytest.raises(ValueError):
        coordinator.request_randomness("0x" + "22" * 20, KEY_HASH, FEE)


def test_fulfill_calls_back_once(coordinator, received):
    request_id = coordinator.request_randomness(CONSUMER, KEY_HASH, FEE)
    assert coordinator.fulfill(request_id, 12345) == 12345
    assert received == [(request_id, 12345)]

    with pytest.raises(ValueError):
        coordinator.fulfill(request_id, 999)
    assert received == [(request_id, 12345)]


def test_fulfill_generates_randomness(coordinator, received):
    request_id = coordinator.request_randomness(CONSUMER, KEY_HASH, FEE)
    value = coordinator.fulfill(request_id)
    assert 0 < value < 2 ** 256
    assert received == [(request_id, value)]


def test_fulfill_unknown_request(coordinator):
    with pytest.raises(KeyError):
        coordinator.fulfill("0x" + "00" * 32, 1)


def test_failed_callback_leaves_request_pending(ledger):
    coordinator = VRFCoordinator(ledger=ledger)

    def broken(request_id, value):
        raise RuntimeError("consumer down")

    coordinator.register_consumer(CONSUMER, broken)
    request_id = coordinator.request_randomness(CONSUMER, KEY_HASH, FEE)
    with pytest.raises(RuntimeError):
        coordinator.fulfill(request_id, 5)
    assert coordinator.get_request_status(request_id)["status"] == "pending"


def test_request_status(coordinator):
    assert coordinator.get_request_status("0xdead") == {"error": "Request not found"}

    request_id = coordinator.request_randomness(CONSUMER, KEY_HASH, FEE)
    coordinator.fulfill(request_id, 77)
    status = coordinator.get_request_status(request_id)
    assert status["status"] == "fulfilled"
    assert status["randomness"] == "77"
    assert isinstance(status["created_at"], str)
    assert isinstance(status["fulfilled_at"], str)


def test_user_seed_separates_restarted_coordinators(ledger):
    # a fresh coordinator starts its nonces over; the consumer's seed keeps ids apart
    ids = []
    for user_seed in (0, 1):
        coordinator = VRFCoordinator(ledger=ledger)
        coordinator.register_consumer(CONSUMER, lambda rid, value: None)
        ids.append(coordinator.request_randomness(CONSUMER, KEY_HASH, FEE, user_seed=user_seed))
    assert ids[0] != ids[1]
    assert coordinator.get_request_status(ids[1])["user_seed"] == 1
