"""
Resource pool tests: ordering, exhaustion and prefix file parsing.
"""

import logging

import pytest

from peerlab_gateway.engine.pools import AsnPool, PrefixPool, normalize_prefix


def test_asn_pool_returns_lowest_free_asn():
    pool = AsnPool(65000, 65002)

    assert pool.size == 3
    assert pool.find_available([]) == 65000
    assert pool.find_available([65000]) == 65001
    assert pool.find_available([65001]) == 65000
    assert pool.find_available([65000, 65001, 65002]) is None


def test_asn_pool_candidates_skip_committed():
    pool = AsnPool(65000, 65004)

    assert list(pool.candidates({65001, 65003})) == [65000, 65002, 65004]


def test_asn_pool_never_leaves_its_range():
    pool = AsnPool(65000, 65001)
    committed: set[int] = {64999, 65002}

    while (asn := pool.find_available(committed)) is not None:
        assert pool.start <= asn <= pool.end
        committed.add(asn)

    assert committed == {64999, 65000, 65001, 65002}
    assert 65000 in pool
    assert 65002 not in pool


def test_asn_pool_rejects_inverted_range():
    with pytest.raises(ValueError):
        AsnPool(65010, 65000)


def test_single_asn_pool_is_valid():
    pool = AsnPool(4200000000, 4200000000)

    assert pool.size == 1
    assert pool.find_available([]) == 4200000000
    assert pool.find_available([4200000000]) is None


def test_prefix_pool_first_free_in_file_order():
    """Scenario B: a lease on the first prefix leaves only the second."""
    pool = PrefixPool(["2001:db8:1::/48", "2001:db8:2::/48"])

    assert pool.find_available([]) == "2001:db8:1::/48"
    assert pool.find_available(["2001:db8:1::/48"]) == "2001:db8:2::/48"
    assert list(pool.candidates(["2001:db8:1::/48"])) == ["2001:db8:2::/48"]
    assert pool.find_available(["2001:db8:1::/48", "2001:db8:2::/48"]) is None


def test_prefix_pool_keeps_file_order_not_sorted_order():
    pool = PrefixPool(["2001:db8:9::/48", "2001:db8:1::/48"])

    assert pool.find_available([]) == "2001:db8:9::/48"


def test_prefix_pool_compares_normalized_text():
    pool = PrefixPool(["2001:0db8:0001:0000::/48"])

    assert list(pool) == ["2001:db8:1::/48"]
    assert "2001:db8:1:0::/48" in pool
    assert pool.find_available(["2001:DB8:1::/48"]) is None


def test_prefix_pool_rejects_duplicates_in_constructor():
    with pytest.raises(ValueError):
        PrefixPool(["2001:db8:1::/48", "2001:db8:1:0::/48"])


def test_normalize_prefix_requires_48():
    assert normalize_prefix(" 2001:db8:5::/48 ") == "2001:db8:5::/48"

    with pytest.raises(ValueError):
        normalize_prefix("2001:db8::/32")
    with pytest.raises(ValueError):
        normalize_prefix("2001:db8:1:1::/48")  # host bits set
    with pytest.raises(ValueError):
        normalize_prefix("10.0.0.0/24")
    with pytest.raises(ValueError):
        normalize_prefix("not-a-prefix")


def test_parse_skips_comments_blank_invalid_and_duplicates(caplog):
    lines = [
        "# lab prefixes",
        "",
        "2001:db8:1::/48",
        "   ",
        "2001:db8:bad",
        "2001:db8::/32",
        "2001:db8:1::/48",
        "2001:db8:2::/48",
    ]

    with caplog.at_level(logging.WARNING, logger="peerlab_gateway.pools"):
        pool = PrefixPool.parse(lines, source="prefixes.txt")

    assert list(pool) == ["2001:db8:1::/48", "2001:db8:2::/48"]
    messages = [r.getMessage() for r in caplog.records]
    assert len(messages) == 3
    assert any("line 5" in m for m in messages)
    assert any("line 6" in m for m in messages)
    assert any("line 7" in m and "duplicate" in m for m in messages)


def test_parse_of_only_invalid_lines_yields_empty_pool():
    pool = PrefixPool.parse(["# nothing usable", "garbage", "2001:db8::/64"])

    assert len(pool) == 0
    assert pool.find_available([]) is None


def test_from_file_loads_pool(tmp_path):
    path = tmp_path / "prefixes.txt"
    path.write_text(
        "# pool\n2001:db8:a::/48\n\nnot-a-prefix\n2001:db8:b::/48\n2001:db8:a::/48\n",
        encoding="utf-8",
    )

    pool = PrefixPool.from_file(path)

    assert list(pool) == ["2001:db8:a::/48", "2001:db8:b::/48"]
    assert pool.find_available(["2001:db8:a::/48"]) == "2001:db8:b::/48"


def test_from_file_missing_file_is_fatal(tmp_path):
    with pytest.raises(OSError):
        PrefixPool.from_file(tmp_path / "missing.txt")
