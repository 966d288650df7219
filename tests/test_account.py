import hashlib

import pytest

from migrashard.account import (
    AccountRegistry,
    AccountState,
    address_to_shard,
    decode_account_state,
    generate_address,
    hash_pub_key,
)


def test_hash_pub_key_is_sha256_prefix():
    key = b"\x04" * 64
    digest = hash_pub_key(key)
    assert len(digest) == 20
    assert hashlib.sha256(key).digest().startswith(digest)


def test_generate_address_length_and_uniqueness():
    first, second = generate_address(), generate_address()
    assert len(first) == 20
    assert first != second and len({first, second}) == 2


def test_address_to_shard_uses_last_five_hex_digits():
    assert address_to_shard("ffffffff00003", 2) == 1
    assert address_to_shard("abc00004", 2) == address_to_shard("00004", 2)


@pytest.mark.parametrize("bad", ["abc", "zzzzzzz"])
def test_address_to_shard_rejects_bad_input(bad):
    with pytest.raises(ValueError):
        address_to_shard(bad, 2)


def test_account_state_round_trip():
    state = AccountState(balance=10**40, migrate=-1, location=1)
    assert decode_account_state(state.encode()) == state


def test_account_state_hash_tracks_content():
    a = AccountState(balance=5, migrate=-1, location=0)
    b = AccountState(balance=6, migrate=-1, location=0)
    assert len(a.hash()) == 32
    assert a.hash() == AccountState(5, -1, 0).hash()
    assert a.hash() != b.hash()


def test_decode_account_state_rejects_garbage():
    with pytest.raises(ValueError):
        decode_account_state(b"not state")


def test_registry_shard_of_caches_and_tracks_own():
    reg = AccountRegistry(shard_num=2, own_shard=0)
    addr = "a1e4380a3b1f749673e270229993ee55f3566000"
    shard = reg.shard_of(addr)
    assert shard == address_to_shard(addr, 2)
    assert reg.account_to_shard[addr] == shard
    assert (addr in reg.in_own_shard) == (shard == 0)


def test_registry_assign_overrides_computed_shard():
    reg = AccountRegistry(shard_num=2, own_shard=1)
    addr = "0000000000000000000000000000000000000002"
    assert reg.shard_of(addr) == 0
    reg.assign(addr, 1)
    assert reg.shard_of(addr) == 1
    assert addr in reg.in_own_shard
    reg.assign(addr, 0)
    assert addr not in reg.in_own_shard


def test_copy_mapping_is_independent():
    reg = AccountRegistry(shard_num=2, own_shard=0)
    reg.assign("00001", 1)
    copy = reg.copy_mapping()
    copy["00001"] = 0
    assert reg.account_to_shard["00001"] == 1
    assert copy == {"00001": 0}